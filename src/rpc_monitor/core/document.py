"""Wire schema of persisted history blobs and the export document.

History is persisted as three JSON blobs, each keyed method → URL:

- ``{namespace}-data-by-method``: latency series
- ``{namespace}-endpoint-history-by-method``: rolling status windows
- ``{namespace}-endpoint-errors-by-method``: error logs

The export document bundles the same three mappings with a version and a
timestamp. Timestamps are ISO-8601 strings on the wire and timezone-aware
datetimes in memory; naive timestamps are read as UTC.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from datetime import UTC, datetime
from enum import StrEnum
from typing import Annotated, Final

from pydantic import (
    AfterValidator,
    BaseModel,
    ConfigDict,
    Field,
    JsonValue,
    TypeAdapter,
    ValidationError,
    field_validator,
)

from rpc_monitor.core.exceptions import ImportFormatError
from rpc_monitor.core.history import HistoryStore
from rpc_monitor.types.models import ErrorEntry, ErrorType, LatencyPoint, StatusCategory

__all__ = [
    "EXPORT_VERSION",
    "BlobKind",
    "ErrorEntryModel",
    "HistoryDocument",
    "LatencyPointModel",
    "apply_document",
    "blob_key",
    "build_document",
    "decode_blobs",
    "encode_blobs",
    "parse_document",
]

EXPORT_VERSION: Final[str] = "1.0"
_SUPPORTED_MAJOR: Final[str] = "1"


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


UtcDatetime = Annotated[datetime, AfterValidator(_as_utc)]


class BlobKind(StrEnum):
    """The three persisted history blobs, valued by their key suffix."""

    LATENCY = "data-by-method"
    STATUS = "endpoint-history-by-method"
    ERRORS = "endpoint-errors-by-method"


def blob_key(namespace: str, kind: BlobKind) -> str:
    """Storage key of a blob.

    Examples:
        >>> blob_key("rpc-monitor", BlobKind.STATUS)
        'rpc-monitor-endpoint-history-by-method'
    """
    return f"{namespace}-{kind.value}"


class LatencyPointModel(BaseModel):
    """Latency point as stored on the wire."""

    time: UtcDatetime
    value: float
    error: bool = False

    def to_point(self) -> LatencyPoint:
        return LatencyPoint(time=self.time, value=self.value, error=self.error)

    @classmethod
    def from_point(cls, point: LatencyPoint) -> LatencyPointModel:
        return cls(time=point.time, value=point.value, error=point.error)


class ErrorEntryModel(BaseModel):
    """Error log entry as stored on the wire."""

    model_config = ConfigDict(populate_by_name=True)

    timestamp: UtcDatetime
    error_type: Annotated[ErrorType, Field(alias="errorType")] = ErrorType.ERROR
    message: str = "Unknown error"
    response_time: Annotated[float, Field(alias="responseTime")] = 0.0
    details: JsonValue = None

    def to_entry(self) -> ErrorEntry:
        return ErrorEntry(
            timestamp=self.timestamp,
            error_type=self.error_type,
            message=self.message,
            response_time=self.response_time,
            details=self.details,
        )

    @classmethod
    def from_entry(cls, entry: ErrorEntry) -> ErrorEntryModel:
        return cls(
            timestamp=entry.timestamp,
            error_type=entry.error_type,
            message=entry.message,
            response_time=entry.response_time,
            details=entry.details,  # pyright: ignore[reportArgumentType]  # validated as JSON
        )


LatencyBlob = dict[str, dict[str, list[LatencyPointModel]]]
StatusBlob = dict[str, dict[str, list[StatusCategory]]]
ErrorBlob = dict[str, dict[str, list[ErrorEntryModel]]]

_LATENCY_ADAPTER: Final[TypeAdapter[LatencyBlob]] = TypeAdapter(LatencyBlob)
_STATUS_ADAPTER: Final[TypeAdapter[StatusBlob]] = TypeAdapter(StatusBlob)
_ERROR_ADAPTER: Final[TypeAdapter[ErrorBlob]] = TypeAdapter(ErrorBlob)


class HistoryDocument(BaseModel):
    """Versioned export document holding the full history of every method."""

    model_config = ConfigDict(populate_by_name=True)

    version: str = EXPORT_VERSION
    timestamp: UtcDatetime
    history_data: Annotated[LatencyBlob, Field(alias="historyData")]
    endpoint_history: Annotated[StatusBlob, Field(alias="endpointHistory")]
    endpoint_errors: Annotated[ErrorBlob, Field(alias="endpointErrors")] = {}

    @field_validator("version", mode="after")
    @classmethod
    def validate_major_version(cls, v: str) -> str:
        """Reject documents written by an incompatible major version.

        Raises:
            ValueError: If the major version is not supported
        """
        major = v.split(".", 1)[0]
        if major != _SUPPORTED_MAJOR:
            msg = f"Unsupported export version: {v} (expected {_SUPPORTED_MAJOR}.x)"
            raise ValueError(msg)
        return v

    def to_json_dict(self) -> dict[str, object]:
        return self.model_dump(mode="json", by_alias=True)


def _latency_blob(store: HistoryStore) -> LatencyBlob:
    return {
        method: {url: [LatencyPointModel.from_point(point) for point in series] for url, series in by_url.items()}
        for method, by_url in store.latency_items().items()
    }


def _status_blob(store: HistoryStore) -> StatusBlob:
    return {
        method: {url: list(window) for url, window in by_url.items()}
        for method, by_url in store.status_items().items()
    }


def _error_blob(store: HistoryStore) -> ErrorBlob:
    return {
        method: {url: [ErrorEntryModel.from_entry(entry) for entry in log] for url, log in by_url.items()}
        for method, by_url in store.error_items().items()
    }


def encode_blobs(store: HistoryStore) -> dict[BlobKind, str]:
    """Serialize the store into the three JSON blobs."""
    return {
        BlobKind.LATENCY: _LATENCY_ADAPTER.dump_json(_latency_blob(store)).decode(),
        BlobKind.STATUS: _STATUS_ADAPTER.dump_json(_status_blob(store)).decode(),
        BlobKind.ERRORS: _ERROR_ADAPTER.dump_json(_error_blob(store), by_alias=True).decode(),
    }


def _apply(
    store: HistoryStore,
    latency: LatencyBlob,
    status: StatusBlob,
    errors: ErrorBlob,
) -> None:
    for method, by_url in latency.items():
        for url, points in by_url.items():
            store.replace_latency_series(method, url, (point.to_point() for point in points))
    for method, by_url in status.items():
        for url, categories in by_url.items():
            store.replace_status_window(method, url, categories)
    for method, by_url in errors.items():
        for url, entries in by_url.items():
            store.replace_error_log(method, url, (entry.to_entry() for entry in entries))


def decode_blobs(store: HistoryStore, blobs: Mapping[BlobKind, str | None]) -> None:
    """Restore persisted blobs into the store, replacing same-keyed entries.

    Missing blobs are treated as empty.

    Raises:
        ImportFormatError: If a blob is not valid JSON or has the wrong shape
    """
    try:
        latency = _LATENCY_ADAPTER.validate_json(blobs.get(BlobKind.LATENCY) or "{}")
        status = _STATUS_ADAPTER.validate_json(blobs.get(BlobKind.STATUS) or "{}")
        errors = _ERROR_ADAPTER.validate_json(blobs.get(BlobKind.ERRORS) or "{}")
    except ValidationError as e:
        msg = f"Persisted history is corrupt: {e.error_count()} validation error(s)"
        raise ImportFormatError(msg) from e
    _apply(store, latency, status, errors)


def build_document(store: HistoryStore, timestamp: datetime) -> HistoryDocument:
    """Build the export document from the full store contents."""
    return HistoryDocument(
        version=EXPORT_VERSION,
        timestamp=timestamp,
        history_data=_latency_blob(store),
        endpoint_history=_status_blob(store),
        endpoint_errors=_error_blob(store),
    )


def parse_document(data: str | bytes | Mapping[str, object]) -> HistoryDocument:
    """Validate an import payload.

    Args:
        data: JSON text or an already decoded JSON object

    Returns:
        Validated export document

    Raises:
        ImportFormatError: If the payload is not a valid export document
    """
    if isinstance(data, str | bytes):
        try:
            decoded: object = json.loads(data)
        except ValueError as e:
            msg = f"Import data is not valid JSON: {e}"
            raise ImportFormatError(msg) from e
    else:
        decoded = data

    if not isinstance(decoded, Mapping):
        msg = "Import data must be a JSON object"
        raise ImportFormatError(msg)

    missing = [key for key in ("historyData", "endpointHistory") if key not in decoded]
    if missing:
        msg = f"Invalid import data format: missing {', '.join(missing)}"
        raise ImportFormatError(msg)

    payload = dict(decoded)  # pyright: ignore[reportUnknownArgumentType]  # JSON boundary
    payload.setdefault("timestamp", datetime.now(UTC).isoformat())

    try:
        return HistoryDocument.model_validate(payload)
    except ValidationError as e:
        details = "; ".join(
            f"{'.'.join(str(loc) for loc in error['loc'])}: {error['msg']}" for error in e.errors()[:5]
        )
        msg = f"Invalid import data format: {details}"
        raise ImportFormatError(msg) from e


def apply_document(store: HistoryStore, document: HistoryDocument) -> None:
    """Merge an export document into the store, keyed by (method, url)."""
    _apply(store, document.history_data, document.endpoint_history, document.endpoint_errors)
