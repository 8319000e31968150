"""Record ingestion and synthetic data generation."""
import time
import logging
from typing import Any, Dict, List, Optional, Union

from pydantic import ValidationError
from pymongo.errors import (
    BulkWriteError,
    ConnectionFailure,
    DuplicateKeyError,
    InvalidOperation,
    PyMongoError,
    WriteError,
)

from db import Database
from errors import StorageUnavailableError, StorageWriteError
from generator import RecordGenerator
from models import GenerateResult, IngestError, IngestResult, SensorRecord

logger = logging.getLogger("sensor-ingest.ingestion")

DUPLICATE_KEY = 11000

# Failures that say nothing about the record itself: the store is gone.
TRANSPORT_ERRORS = (ConnectionFailure, InvalidOperation)


def _describe_validation_error(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        location = ".".join(str(part) for part in item["loc"]) or "record"
        parts.append(f"{location}: {item['msg']}")
    return "; ".join(parts)


def _only_duplicates(error: BulkWriteError) -> bool:
    write_errors = error.details.get("writeErrors", [])
    if error.details.get("writeConcernErrors"):
        return False
    return bool(write_errors) and all(item.get("code") == DUPLICATE_KEY for item in write_errors)


class IngestionService:
    """Persists inbound records one at a time and bulk-inserts generated ones."""

    def __init__(self, database: Database, generator: Optional[RecordGenerator] = None):
        self.database = database
        self.generator = generator or RecordGenerator()

    async def ingest(self, payload: Union[Dict[str, Any], List[Any]]) -> IngestResult:
        """Save one record or a list of records.

        Each record is written independently: a record that fails model
        validation or is rejected by the store is reported in the result and
        the rest are still written. Only a storage outage aborts the call.
        """
        self.database.require_connection()

        records = payload if isinstance(payload, list) else [payload]
        result = IngestResult()

        for index, raw in enumerate(records):
            error = await self._save_one(raw)
            if error is None:
                result.saved_count += 1
            else:
                result.failed_count += 1
                result.errors.append(IngestError(index=index, record=raw, error=error))

        if result.failed_count:
            logger.warning(f"Ingested {result.saved_count} record(s), {result.failed_count} failed")
        else:
            logger.info(f"Ingested {result.saved_count} record(s)")
        return result

    async def _save_one(self, raw: Any) -> Optional[str]:
        """Persist a single record; returns an error message instead of raising."""
        try:
            record = SensorRecord.model_validate(raw)
        except ValidationError as e:
            return _describe_validation_error(e)

        try:
            await self.database.records.insert_one(record.to_document())
        except DuplicateKeyError:
            return f"Duplicate recordId: {record.record_id}"
        except WriteError as e:
            return f"Record rejected by store: {(e.details or {}).get('errmsg', str(e))}"
        except TRANSPORT_ERRORS as e:
            logger.error(f"Storage unavailable while saving {record.record_id}: {e}")
            raise StorageUnavailableError("Database is unavailable") from e
        except PyMongoError as e:
            logger.error(f"Storage error while saving {record.record_id}: {e}")
            raise StorageUnavailableError("Database operation failed") from e
        return None

    async def generate(self, count: int = 5000, batch_size: int = 1000) -> GenerateResult:
        """Generate ``count`` synthetic records and insert them in chunks.

        Chunks are unordered bulk inserts. Duplicate keys inside a chunk are
        skipped; any other write failure stops the remaining chunks.
        """
        self.database.require_connection()

        start_time = time.perf_counter()
        total_inserted = 0

        for batch in self.generator.batches(count, batch_size):
            total_inserted += await self._insert_chunk(batch)
            logger.info(f"Inserted {total_inserted}/{count} records")

        elapsed = time.perf_counter() - start_time
        rate = round(total_inserted / elapsed) if elapsed > 0 else total_inserted

        return GenerateResult(
            inserted=total_inserted,
            duration_ms=round(elapsed * 1000),
            rate_per_second=rate,
        )

    async def _insert_chunk(self, batch: List[Dict[str, Any]]) -> int:
        documents = [SensorRecord.model_validate(item).to_document() for item in batch]
        try:
            result = await self.database.records.insert_many(documents, ordered=False)
        except BulkWriteError as e:
            if not _only_duplicates(e):
                logger.error(f"Bulk insert failed: {e.details.get('writeErrors', [])[:1]}")
                raise StorageWriteError("Bulk insert failed") from e
            inserted = e.details.get("nInserted", 0)
            skipped = len(e.details.get("writeErrors", []))
            logger.warning(f"Some records already exist, skipped {skipped} duplicate(s)")
            return inserted
        except TRANSPORT_ERRORS as e:
            logger.error(f"Storage unavailable during bulk insert: {e}")
            raise StorageUnavailableError("Database is unavailable") from e
        except PyMongoError as e:
            logger.error(f"Bulk insert failed: {e}")
            raise StorageWriteError("Bulk insert failed") from e
        return len(result.inserted_ids)
