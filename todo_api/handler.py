"""
Serverless entry point.

``handler(event, context)`` accepts function-URL / HTTP API (payload v2) events
and REST API (v1) events, runs them through the shared dispatcher, and returns
a proxy-integration response.
"""

import base64
import binascii
import json
import logging
from typing import Any, Dict, Optional, Tuple

from .config import get_settings
from .dispatcher import DispatchRequest, DispatchResponse, TaskDispatcher, error_response
from .errors import ValidationError
from .logging_setup import setup_logging
from .main import build_dispatcher

logger = logging.getLogger(__name__)

_dispatcher: Optional[TaskDispatcher] = None


def _get_dispatcher() -> TaskDispatcher:
    global _dispatcher
    if _dispatcher is None:
        settings = get_settings()
        setup_logging(settings.log_level)
        _dispatcher = build_dispatcher(settings)
        logger.info("Dispatcher initialized for serverless handler")
    return _dispatcher


def _method_and_path(event: Dict[str, Any]) -> Tuple[str, str]:
    http = (event.get("requestContext") or {}).get("http") or {}
    method = str(http.get("method") or event.get("httpMethod") or "GET")
    path = str(event.get("rawPath") or http.get("path") or event.get("path") or "/")
    return method.upper(), path


def _parse_body(event: Dict[str, Any]) -> Any:
    raw = event.get("body")
    if raw is None:
        return None
    if not isinstance(raw, str):
        raise ValidationError("Request body must be a JSON object")
    if event.get("isBase64Encoded"):
        try:
            raw = base64.b64decode(raw.encode("utf-8")).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError) as exc:
            raise ValidationError("Request body base64 decode failed") from exc
    if not raw.strip():
        return None
    try:
        return json.loads(raw)
    except ValueError as exc:
        raise ValidationError("Request body must be valid JSON") from exc


def _to_proxy_response(response: DispatchResponse) -> Dict[str, Any]:
    result: Dict[str, Any] = {
        "statusCode": response.status_code,
        "headers": {"content-type": "application/json", "cache-control": "no-store"},
    }
    if response.body is not None:
        result["body"] = json.dumps(response.body)
    return result


def handler(event: Dict[str, Any], context: Any = None, dispatcher: Optional[TaskDispatcher] = None) -> Dict[str, Any]:
    dispatcher = dispatcher or _get_dispatcher()
    method, path = _method_and_path(event)
    try:
        body = _parse_body(event)
    except ValidationError as exc:
        return _to_proxy_response(error_response(exc))

    query = {k: v for k, v in (event.get("queryStringParameters") or {}).items() if v is not None}
    response = dispatcher.dispatch(DispatchRequest(method=method, path=path, query=query, body=body))
    logger.info("%s %s -> %s", method, path, response.status_code)
    return _to_proxy_response(response)
