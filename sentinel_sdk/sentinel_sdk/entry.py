"""
Log entry data model.

A LogEntry is one captured request/response interaction. Entries are
created by an event source (e.g. the Flask middleware), handed to the
SDK via enqueue(), and only read afterwards for serialization.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple

from sentinel_sdk.clock import iso_timestamp, utc_now


class DeliveryOutcome(Enum):
    """Result of delivering one entry to the collector."""
    DELIVERED = "delivered"
    REJECTED = "rejected"  # 4xx, not retried
    FAILED = "failed"  # retries exhausted or unserializable


@dataclass(frozen=True)
class LogEntry:
    """
    One captured HTTP interaction awaiting delivery.

    Attributes:
        method: HTTP method
        url: Request path including query string
        timestamp: When the request was received (timezone-aware)
        query: Parsed query parameters
        request_headers: Request headers, already redacted
        request_body: Request body, already sanitized and size-bounded
        status_code: Response status, None until the response is captured
        response_body: Response body, already sanitized
        execution_time_ms: Handler duration in milliseconds
        error: Error message when the handler raised
    """
    method: str
    url: str
    timestamp: datetime = field(default_factory=utc_now)
    query: Mapping[str, Any] = field(default_factory=dict)
    request_headers: Mapping[str, str] = field(default_factory=dict)
    request_body: Any = None
    status_code: Optional[int] = None
    response_body: Any = None
    execution_time_ms: Optional[float] = None
    error: Optional[str] = None

    def __post_init__(self):
        if self.execution_time_ms is not None and self.execution_time_ms < 0:
            raise ValueError(f"execution_time_ms must be non-negative, got {self.execution_time_ms}")

    def to_payload(self) -> Dict[str, Any]:
        """Convert to the JSON body expected by POST /api/sdk/logs."""
        payload: Dict[str, Any] = {
            "timestamp": iso_timestamp(self.timestamp),
            "method": self.method,
            "url": self.url,
            "query": dict(self.query),
            "requestHeaders": dict(self.request_headers),
            "requestBody": self.request_body,
        }
        if self.status_code is not None:
            payload["statusCode"] = self.status_code
        if self.response_body is not None:
            payload["responseBody"] = self.response_body
        if self.execution_time_ms is not None:
            payload["executionTimeMs"] = round(self.execution_time_ms, 2)
        if self.error:
            payload["error"] = self.error
        return payload


# A drained, immutable snapshot of entries
Batch = Tuple[LogEntry, ...]
