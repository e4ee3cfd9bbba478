"""
Flask middleware for capturing request/response data.

Registers before/after/teardown hooks that build a LogEntry per request
and hand it to a SentinelSDK. The hooks never change the response and
never raise into the application: capture failures are logged and the
request continues.
"""

import logging
from typing import Any, Dict, Optional

from flask import Flask, Request, Response, g, got_request_exception, request

from sentinel_sdk.clock import elapsed_ms, format_duration, monotonic_ms, utc_now
from sentinel_sdk.config import MAX_LOG_FIELD_SIZE_BYTES
from sentinel_sdk.entry import LogEntry
from sentinel_sdk.sdk import SentinelSDK
from sentinel_sdk.serialization import make_serializable, parse_body, redact_headers

logger = logging.getLogger(__name__)

EXTENSION_KEY = "sentinel_sdk"

BODY_FAILED = "[Body serialization failed]"
RESPONSE_FAILED = "[Response serialization failed]"


def sentinel_middleware(app: Flask, sdk: SentinelSDK) -> None:
    """
    Register log capture on a Flask app.

    Args:
        app: Flask application instance
        sdk: Installed SDK that receives captured entries
    """
    app.extensions[EXTENSION_KEY] = sdk

    def _field_limit() -> int:
        return sdk.config.max_field_size_bytes if sdk.config else MAX_LOG_FIELD_SIZE_BYTES

    @app.before_request
    def before_sentinel_request():
        """Capture request data before processing."""
        if not sdk.is_active:
            return

        try:
            g.sentinel_request_data = _capture_request(request, _field_limit())
            g.sentinel_start = monotonic_ms()
        except Exception as e:
            logger.debug(f"Failed to capture request: {e!r}")

    @app.after_request
    def after_sentinel_request(response: Response) -> Response:
        """Capture response data and enqueue the entry."""
        request_data = g.pop("sentinel_request_data", None)
        if request_data is None:
            return response

        try:
            entry = LogEntry(
                status_code=response.status_code,
                response_body=_capture_response_body(response, _field_limit()),
                execution_time_ms=elapsed_ms(g.pop("sentinel_start", monotonic_ms())),
                error=g.pop("sentinel_error", None),
                **request_data,
            )
            _enqueue(sdk, entry)
        except Exception as e:
            logger.error(f"Failed to capture response: {e!r}")

        return response

    def _record_exception(sender: Flask, exception: BaseException, **extra: Any) -> None:
        if "sentinel_request_data" in g:
            g.sentinel_error = str(exception) or type(exception).__name__

    got_request_exception.connect(_record_exception, app, weak=False)

    @app.teardown_request
    def teardown_sentinel_request(exc: Optional[BaseException]) -> None:
        """Record requests that failed before a response was produced."""
        request_data = g.pop("sentinel_request_data", None)
        if request_data is None or exc is None:
            return

        try:
            entry = LogEntry(
                status_code=500,
                execution_time_ms=elapsed_ms(g.pop("sentinel_start", monotonic_ms())),
                error=str(exc) or type(exc).__name__,
                **request_data,
            )
            _enqueue(sdk, entry)
        except Exception as e:
            logger.error(f"Failed to capture failed request: {e!r}")


def _enqueue(sdk: SentinelSDK, entry: LogEntry) -> None:
    if sdk.enqueue(entry):
        logger.debug(
            f"Captured {entry.method} {entry.url} - {entry.status_code} "
            f"({format_duration(entry.execution_time_ms or 0.0)})"
        )


def _capture_request(req: Request, limit: int) -> Dict[str, Any]:
    """
    Capture relevant request data.

    Args:
        req: Flask Request object
        limit: Maximum length of any string field

    Returns:
        Keyword arguments for LogEntry
    """
    return {
        "timestamp": utc_now(),
        "method": req.method,
        "url": req.full_path.rstrip("?") if req.query_string else req.path,
        "query": {key: _single_or_list(req.args.getlist(key)) for key in req.args.keys()},
        "request_headers": redact_headers(dict(req.headers)),
        "request_body": _capture_request_body(req, limit),
    }


def _single_or_list(values: list) -> Any:
    return values[0] if len(values) == 1 else values


def _capture_request_body(req: Request, limit: int) -> Any:
    try:
        if req.is_json:
            body = req.get_json(silent=True)
        elif req.form:
            body = req.form.to_dict(flat=True)
        elif req.data:
            body = parse_body(req.get_data(cache=True))
        else:
            return None
        return make_serializable(body, limit)
    except Exception:
        return BODY_FAILED


def _capture_response_body(resp: Response, limit: int) -> Any:
    """Capture the response body. Streamed responses are skipped."""
    if resp.is_streamed:
        return None

    try:
        content_type = resp.content_type or ""
        if "application/json" in content_type:
            body = resp.get_json(silent=True)
            if body is None:
                body = resp.get_data(as_text=True)
        elif content_type.startswith("text/"):
            body = resp.get_data(as_text=True)
        elif resp.get_data():
            body = parse_body(resp.get_data())
        else:
            return None
        return make_serializable(body, limit)
    except Exception:
        return RESPONSE_FAILED


def get_sentinel_sdk(app: Flask) -> Optional[SentinelSDK]:
    """Return the SDK registered on an app, if any."""
    return app.extensions.get(EXTENSION_KEY)
