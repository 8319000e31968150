"""Read path and bulk delete over the records collection."""
import math
import logging
from datetime import datetime
from typing import Any, Dict, Optional

from pymongo import ASCENDING, DESCENDING
from pymongo.errors import ConnectionFailure, InvalidOperation

from db import Database
from errors import StorageUnavailableError
from models import DeleteResult, Pagination, RecordsPage, RecordStats

logger = logging.getLogger("sensor-ingest.records")

DEFAULT_PAGE_SIZE = 100


def _serialize(document: Dict[str, Any]) -> Dict[str, Any]:
    document.pop("_id", None)
    for key, value in document.items():
        if isinstance(value, datetime):
            document[key] = value.isoformat()
    return document


class RecordQueries:
    """Thin query composition over the records collection."""

    def __init__(self, database: Database):
        self.database = database

    async def list_records(
        self,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE,
        status: Optional[str] = None,
        sort_by: str = "timestamp",
        order: str = "desc",
    ) -> RecordsPage:
        self.database.require_connection()

        query = {"status": status} if status else {}
        skip = (page - 1) * limit
        direction = ASCENDING if order == "asc" else DESCENDING

        try:
            collection = self.database.records
            cursor = collection.find(query).sort(sort_by, direction).skip(skip).limit(limit)
            documents = await cursor.to_list(length=limit)
            total = await collection.count_documents(query)
        except (ConnectionFailure, InvalidOperation) as e:
            logger.error(f"Error fetching records: {e}")
            raise StorageUnavailableError("Database is unavailable") from e

        return RecordsPage(
            data=[_serialize(document) for document in documents],
            pagination=Pagination(
                total=total,
                page=page,
                limit=limit,
                pages=math.ceil(total / limit) if limit else 0,
            ),
        )

    async def stats(self) -> RecordStats:
        self.database.require_connection()

        try:
            collection = self.database.records
            total = await collection.count_documents({})
            by_status_cursor = collection.aggregate([
                {"$group": {"_id": "$status", "count": {"$sum": 1}}},
            ])
            by_status = {item["_id"]: item["count"] async for item in by_status_cursor}
            averages_cursor = collection.aggregate([
                {"$group": {
                    "_id": None,
                    "temperature": {"$avg": "$temperature"},
                    "humidity": {"$avg": "$humidity"},
                }},
            ])
            averages = [item async for item in averages_cursor]
        except (ConnectionFailure, InvalidOperation) as e:
            logger.error(f"Error fetching stats: {e}")
            raise StorageUnavailableError("Database is unavailable") from e

        summary = averages[0] if averages else {}
        return RecordStats(
            total=total,
            by_status=by_status,
            average_temperature=summary.get("temperature") or 0,
            average_humidity=summary.get("humidity") or 0,
        )

    async def delete_all(self) -> DeleteResult:
        self.database.require_connection()

        try:
            result = await self.database.records.delete_many({})
        except (ConnectionFailure, InvalidOperation) as e:
            logger.error(f"Error deleting records: {e}")
            raise StorageUnavailableError("Database is unavailable") from e
        logger.info(f"Deleted {result.deleted_count} records")
        return DeleteResult(
            deleted_count=result.deleted_count,
            message=f"Deleted {result.deleted_count} records",
        )
