"""Tests for record ingestion and bulk generation."""
from datetime import datetime, timezone

import pytest
from pymongo.errors import AutoReconnect, BulkWriteError, OperationFailure, ServerSelectionTimeoutError

from errors import StorageUnavailableError, StorageWriteError
from generator import RecordGenerator
from ingestion import IngestionService

NOW = datetime(2024, 1, 31, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def service(connected_database) -> IngestionService:
    return IngestionService(connected_database, RecordGenerator(seed=1, clock=lambda: NOW))


@pytest.fixture
def collection(client_factory):
    return client_factory.collection


class TestIngest:
    @pytest.mark.asyncio
    async def test_single_record(self, service, collection, valid_record):
        result = await service.ingest(valid_record)

        assert result.saved_count == 1
        assert result.failed_count == 0
        stored = collection.documents[0]
        assert stored["recordId"] == "REC-A-0001"
        assert stored["timestamp"] == datetime(2024, 1, 31, 8, 0, tzinfo=timezone.utc)
        assert "createdAt" in stored

    @pytest.mark.asyncio
    async def test_defaults_are_applied(self, service, collection, valid_record):
        del valid_record["status"]
        del valid_record["metadata"]
        del valid_record["timestamp"]

        await service.ingest(valid_record)

        stored = collection.documents[0]
        assert stored["status"] == "active"
        assert stored["metadata"] == {"source": "api", "version": "1.0"}
        assert isinstance(stored["timestamp"], datetime)

    @pytest.mark.asyncio
    async def test_duplicate_is_isolated(self, service, collection, valid_record):
        second = dict(valid_record, recordId="REC-A-0002")

        result = await service.ingest([valid_record, dict(valid_record), second])

        assert result.saved_count == 2
        assert result.failed_count == 1
        assert result.errors[0].index == 1
        assert result.errors[0].error == "Duplicate recordId: REC-A-0001"
        assert [d["recordId"] for d in collection.documents] == ["REC-A-0001", "REC-A-0002"]

    @pytest.mark.asyncio
    async def test_model_failure_is_per_record(self, service, collection, valid_record):
        blank = dict(valid_record, recordId="   ")
        second = dict(valid_record, recordId="REC-A-0002")

        result = await service.ingest([blank, second])

        assert result.saved_count == 1
        assert result.failed_count == 1
        assert result.errors[0].index == 0
        assert "recordId" in result.errors[0].error
        assert result.errors[0].record == blank

    @pytest.mark.asyncio
    async def test_response_body(self, service, valid_record):
        result = await service.ingest([valid_record, dict(valid_record)])

        body = result.to_response()

        assert body["message"] == "Ingested 1 record(s)"
        assert body["savedCount"] == 1
        assert body["failedCount"] == 1
        assert body["errors"][0]["index"] == 1

    @pytest.mark.asyncio
    async def test_response_omits_empty_errors(self, service, valid_record):
        body = (await service.ingest(valid_record)).to_response()

        assert "errors" not in body

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [
        ServerSelectionTimeoutError("No servers available"),
        AutoReconnect("connection reset"),
    ])
    async def test_outage_aborts_the_call(self, service, collection, valid_record, error):
        collection.fail_with = error

        with pytest.raises(StorageUnavailableError):
            await service.ingest([valid_record])

    @pytest.mark.asyncio
    async def test_not_connected(self, database, valid_record):
        service = IngestionService(database)

        with pytest.raises(StorageUnavailableError):
            await service.ingest(valid_record)


class TestGenerate:
    @pytest.mark.asyncio
    async def test_chunks_are_inserted_unordered(self, service, collection):
        result = await service.generate(count=2500, batch_size=1000)

        assert collection.insert_many_calls == [1000, 1000, 500]
        assert result.inserted == 2500
        assert len(collection.documents) == 2500
        assert result.duration_ms >= 0
        assert result.rate_per_second >= 0

    @pytest.mark.asyncio
    async def test_duplicates_are_skipped(self, service, collection, valid_record):
        await service.ingest(dict(valid_record, recordId="REC-000002"))

        result = await service.generate(count=300, batch_size=100)

        assert collection.insert_many_calls == [100, 100, 100]
        assert result.inserted == 299
        assert len(collection.documents) == 300

    @pytest.mark.asyncio
    async def test_second_run_inserts_nothing_new(self, service, collection):
        await service.generate(count=200, batch_size=100)

        result = await service.generate(count=200, batch_size=100)

        assert result.inserted == 0
        assert len(collection.documents) == 200

    @pytest.mark.asyncio
    async def test_non_duplicate_bulk_error_stops_generation(self, service, collection):
        collection.fail_with = BulkWriteError({
            "writeErrors": [{"index": 0, "code": 121, "errmsg": "Document failed validation"}],
            "writeConcernErrors": [],
            "nInserted": 0,
        })

        with pytest.raises(StorageWriteError):
            await service.generate(count=300, batch_size=100)

    @pytest.mark.asyncio
    async def test_other_store_error_is_a_write_error(self, service, collection):
        collection.fail_with = OperationFailure("not authorized")

        with pytest.raises(StorageWriteError):
            await service.generate(count=100, batch_size=100)

    @pytest.mark.asyncio
    async def test_outage_during_generation(self, service, collection):
        collection.fail_with = AutoReconnect("connection reset")

        with pytest.raises(StorageUnavailableError):
            await service.generate(count=100, batch_size=100)
