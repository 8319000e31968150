"""Tests for synthetic record generation."""
from datetime import datetime, timedelta, timezone

import pytest

from generator import LOCATIONS, STATUSES, RecordGenerator
from models import SensorRecord

NOW = datetime(2024, 1, 31, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def generator() -> RecordGenerator:
    return RecordGenerator(seed=7, clock=lambda: NOW)


def test_record_shape(generator):
    record = generator.record(42)

    assert record["recordId"] == "REC-000042"
    assert NOW - timedelta(hours=24) < record["timestamp"] <= NOW
    assert -10 <= record["temperature"] <= 50
    assert 0 <= record["humidity"] <= 100
    assert round(record["temperature"], 2) == record["temperature"]
    assert record["location"] in LOCATIONS
    assert record["status"] in STATUSES
    assert record["metadata"] == {"source": "generator", "version": "1.0"}


def test_generated_records_are_valid_models(generator):
    for index in range(1, 200):
        SensorRecord.model_validate(generator.record(index))


def test_seeded_generators_agree():
    first = RecordGenerator(seed=3, clock=lambda: NOW)
    second = RecordGenerator(seed=3, clock=lambda: NOW)

    assert [first.record(i) for i in range(1, 20)] == [second.record(i) for i in range(1, 20)]


def test_batches_are_chunked(generator):
    batches = list(generator.batches(2500, 1000))

    assert [len(batch) for batch in batches] == [1000, 1000, 500]
    assert batches[0][0]["recordId"] == "REC-000001"
    assert batches[2][-1]["recordId"] == "REC-002500"


def test_exact_multiple_has_no_partial_chunk(generator):
    assert [len(batch) for batch in generator.batches(300, 100)] == [100, 100, 100]


def test_batches_are_lazy(generator):
    batches = generator.batches(10_000, 100)

    first = next(batches)

    assert len(first) == 100
    assert first[-1]["recordId"] == "REC-000100"


def test_invalid_batch_size(generator):
    with pytest.raises(ValueError):
        list(generator.batches(10, 0))
