from __future__ import annotations

import json
from http import HTTPStatus
from typing import Any

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse, Response

_SUCCESS_CODES = {200: "ok", 201: "created", 202: "accepted"}
_SKIPPED_HEADERS = {"content-length", "content-type"}


def _success_message(status_code: int) -> str:
    try:
        return HTTPStatus(status_code).phrase
    except ValueError:
        return "Success"


def success_envelope(data: Any, status_code: int = 200) -> dict[str, Any]:
    return {
        "code": _SUCCESS_CODES.get(status_code, "ok"),
        "message": _success_message(status_code),
        "data": data,
        "details": {},
    }


def _is_enveloped(payload: Any) -> bool:
    return (
        isinstance(payload, dict)
        and "code" in payload
        and "message" in payload
        and ("data" in payload or "details" in payload)
    )


def _rewrap(original: Response, content: dict[str, Any], status_code: int) -> JSONResponse:
    replacement = JSONResponse(status_code=status_code, content=content)
    for key, value in original.headers.items():
        if key.lower() not in _SKIPPED_HEADERS:
            replacement.headers[key] = value
    return replacement


def _passthrough(original: Response, body: bytes) -> Response:
    headers = {key: value for key, value in original.headers.items() if key.lower() != "content-length"}
    return Response(content=body, status_code=original.status_code, headers=headers)


async def _read_body(response: Response) -> bytes:
    # call_next hands back a streaming response; its body has to be drained.
    body = getattr(response, "body", None)
    if body is not None:
        return body
    chunks = [chunk if isinstance(chunk, bytes) else chunk.encode() async for chunk in response.body_iterator]
    return b"".join(chunks)


class ResponseEnvelopeMiddleware(BaseHTTPMiddleware):
    """Wrap successful JSON bodies as ``{code, message, data, details}``."""

    async def dispatch(self, request, call_next) -> Response:
        response = await call_next(request)

        if not 200 <= response.status_code < 300:
            return response
        if response.status_code == 204:
            return _rewrap(response, success_envelope(None, 200), 200)
        if "application/json" not in response.headers.get("content-type", ""):
            return response

        body = await _read_body(response)
        try:
            raw_body = body.decode("utf-8")
            payload = json.loads(raw_body) if raw_body else None
        except (UnicodeDecodeError, json.JSONDecodeError):
            return _passthrough(response, body)

        if _is_enveloped(payload):
            return _passthrough(response, body)
        return _rewrap(response, success_envelope(payload, response.status_code), response.status_code)


def register_response_envelope(app) -> None:
    app.add_middleware(ResponseEnvelopeMiddleware)
