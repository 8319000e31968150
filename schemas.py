"""Validation schemas for each inbound payload shape."""
from validation import FieldSpec, FieldType, Schema

RECORD_STATUSES = ("active", "inactive", "error")
SORTABLE_FIELDS = ("timestamp", "temperature", "humidity", "recordId", "location", "status")


def _non_negative_timestamp(value):
    if value < 0:
        return "timestamp must be a non-negative epoch milliseconds value"
    return None


def _digits(value):
    return value.isascii() and value.isdigit() and len(value) <= 9


def _positive_page_number(value):
    if _digits(value) and int(value) < 1:
        return "page must be at least 1"
    return None


def _bounded_page_size(value):
    if _digits(value) and not 1 <= int(value) <= 1000:
        return "limit must be between 1 and 1000"
    return None


METADATA_SCHEMA = Schema(
    fields={
        "source": FieldSpec(FieldType.STRING, max_length=50),
        "version": FieldSpec(FieldType.STRING, max_length=20),
    },
)

RECORD_SCHEMA = Schema(
    fields={
        "recordId": FieldSpec(FieldType.STRING, required=True, min_length=1, max_length=100),
        "timestamp": FieldSpec(FieldType.NUMBER, custom=_non_negative_timestamp),
        "temperature": FieldSpec(FieldType.NUMBER, required=True, min=-50, max=150),
        "humidity": FieldSpec(FieldType.NUMBER, required=True, min=0, max=100),
        "location": FieldSpec(FieldType.STRING, required=True, min_length=1, max_length=100),
        "status": FieldSpec(FieldType.STRING, enum=RECORD_STATUSES),
        "metadata": FieldSpec(FieldType.OBJECT, schema=METADATA_SCHEMA),
    },
    strict=False,
)

GENERATE_SCHEMA = Schema(
    fields={
        "count": FieldSpec(FieldType.NUMBER, min=1, max=10000, integer=True),
        "batchSize": FieldSpec(FieldType.NUMBER, min=100, max=5000, integer=True),
    },
    strict=True,
)

# Query strings arrive as text: numeric parameters are checked by pattern,
# range checks only apply to values that are plain digits.
RECORDS_QUERY_SCHEMA = Schema(
    fields={
        "page": FieldSpec(
            FieldType.STRING,
            pattern=r"^[0-9]{1,9}$",
            custom=_positive_page_number,
        ),
        "limit": FieldSpec(
            FieldType.STRING,
            pattern=r"^[0-9]{1,9}$",
            custom=_bounded_page_size,
        ),
        "status": FieldSpec(FieldType.STRING, enum=RECORD_STATUSES),
        "sortBy": FieldSpec(FieldType.STRING, enum=SORTABLE_FIELDS),
        "order": FieldSpec(FieldType.STRING, enum=("asc", "desc")),
    },
    strict=True,
)
