# -*- coding: utf-8 -*-
"""HTTP helper functions shared by the blueprints."""

from typing import Optional, Mapping, Any, Dict
from flask import jsonify, g, current_app, request


def get_request_id() -> str:
    """Get the current request_id from Flask g object."""
    return getattr(g, 'request_id', 'unknown')


def api_ok(payload: Optional[dict] = None, status: int = 200, request_id: Optional[str] = None):
    """Standard API success response."""
    rid = request_id or get_request_id()
    resp = jsonify({"ok": True, "data": payload, "request_id": rid})
    resp.status_code = status
    resp.headers["X-Request-ID"] = rid
    return resp


def api_error(code: str, message: str, status: int = 400, details: Optional[Mapping[str, Any]] = None, request_id: Optional[str] = None):
    """Standard API error response."""
    rid = request_id or get_request_id()
    body: Dict[str, Any] = {"ok": False, "error": {"code": code, "message": message}, "request_id": rid}
    if details is not None:
        body["error"]["details"] = details
    resp = jsonify(body)
    resp.status_code = status
    resp.headers["X-Request-ID"] = rid
    return resp


def webhook_response(body: Mapping[str, Any], status: int = 200):
    """
    Webhook responses keep the flat shape CRM integrations expect
    ({"success": true, ...} / {"error": "..."}), with the request id in a header.
    """
    resp = jsonify(dict(body))
    resp.status_code = status
    resp.headers["X-Request-ID"] = get_request_id()
    return resp


def webhook_error(message: str, status: int = 400, details: Optional[Mapping[str, Any]] = None):
    """400-class errors are {"error": ...}; 404/5xx also carry "success": false."""
    body: Dict[str, Any] = {"error": message}
    if status >= 404:
        body = {"success": False, "error": message}
    if details is not None:
        body["details"] = details
    return webhook_response(body, status)


def log_rejection(reason: str, details: str = "") -> None:
    """
    Log why a request was rejected, without echoing payload values.

    Args:
        reason: Short category (validation, not_found, server_error)
        details: Safe description of the issue
    """
    endpoint = request.endpoint or "unknown"
    request_id = get_request_id()
    current_app.logger.warning(f"[REJECT] request_id={request_id} endpoint={endpoint} reason={reason} details={details}")
