"""Data models for the sensor-ingest service."""
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

RecordStatus = Literal["active", "inactive", "error"]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RecordMetadata(BaseModel):
    source: str = "api"
    version: str = "1.0"


class SensorRecord(BaseModel):
    """A single sensor reading as persisted in the store."""
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    record_id: str = Field(..., alias="recordId", min_length=1)
    timestamp: datetime = Field(default_factory=utcnow)
    temperature: float = Field(..., ge=-50, le=150)
    humidity: float = Field(..., ge=0, le=100)
    location: str = Field(..., min_length=1)
    status: RecordStatus = "active"
    metadata: RecordMetadata = Field(default_factory=RecordMetadata)

    @field_validator("timestamp", mode="before")
    @classmethod
    def _epoch_millis(cls, value: Any) -> Any:
        # Numeric timestamps on the wire are epoch milliseconds.
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        return value

    def to_document(self) -> Dict[str, Any]:
        document = self.model_dump(by_alias=True)
        document["createdAt"] = utcnow()
        return document


class IngestError(BaseModel):
    index: int
    record: Any
    error: str


class IngestResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    saved_count: int = Field(0, alias="savedCount")
    failed_count: int = Field(0, alias="failedCount")
    errors: List[IngestError] = Field(default_factory=list)

    def to_response(self) -> Dict[str, Any]:
        body = {
            "message": f"Ingested {self.saved_count} record(s)",
            "savedCount": self.saved_count,
            "failedCount": self.failed_count,
        }
        if self.errors:
            body["errors"] = [error.model_dump() for error in self.errors]
        return body


class GenerateResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    inserted: int
    duration_ms: int = Field(..., alias="durationMs")
    rate_per_second: int = Field(..., alias="ratePerSecond")


class Pagination(BaseModel):
    total: int
    page: int
    limit: int
    pages: int


class RecordsPage(BaseModel):
    data: List[Dict[str, Any]]
    pagination: Pagination


class RecordStats(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    total: int
    by_status: Dict[str, int] = Field(default_factory=dict, alias="byStatus")
    average_temperature: float = Field(0, alias="averageTemperature")
    average_humidity: float = Field(0, alias="averageHumidity")


class DeleteResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    deleted_count: int = Field(..., alias="deletedCount")
    message: Optional[str] = None
