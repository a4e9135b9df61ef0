"""FastAPI application serving webhook callback URLs."""

from __future__ import annotations

import json
from typing import Any

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse

from webhookbot.ingest.dispatcher import WebhookDispatcher

_MAX_BODY_SIZE = 1024 * 1024  # 1 MiB


class InvalidRequestError(Exception):
    """Raised when an inbound request cannot be turned into a payload."""

    def __init__(self, message: str, status_code: int = 400) -> None:
        self.message = message
        self.status_code = status_code
        super().__init__(message)


async def _read_body(request: Request) -> bytes:
    """Read the request body, refusing anything above ``_MAX_BODY_SIZE``."""
    declared = request.headers.get("content-length")
    if declared is not None and declared.isdigit() and int(declared) > _MAX_BODY_SIZE:
        raise InvalidRequestError("Request body too large", status_code=413)

    body = bytearray()
    async for chunk in request.stream():
        body.extend(chunk)
        if len(body) > _MAX_BODY_SIZE:
            raise InvalidRequestError("Request body too large", status_code=413)
    return bytes(body)


async def extract_payload(request: Request) -> dict[str, Any]:
    """Merge query parameters and top-level JSON body fields into one payload.

    JSON fields win when both carry the same name.
    """
    payload: dict[str, Any] = dict(request.query_params)
    if request.method != "POST":
        return payload

    body = await _read_body(request)
    if not body.strip():
        return payload
    try:
        data = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise InvalidRequestError("Request body is not valid JSON") from exc
    except RecursionError as exc:
        raise InvalidRequestError("Request body is nested too deeply") from exc
    if not isinstance(data, dict):
        raise InvalidRequestError("Request body must be a JSON object")
    payload.update(data)
    return payload


def create_app(dispatcher: WebhookDispatcher, route_path: str = "") -> FastAPI:
    """Create the ingestion app; callbacks are served at ``{route_path}/{token}``."""
    app = FastAPI(docs_url=None, redoc_url=None, openapi_url=None)

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.api_route(f"{route_path.rstrip('/')}/{{token}}", methods=["GET", "POST"])
    async def receive(request: Request, token: str) -> Response:
        try:
            payload = await extract_payload(request)
        except InvalidRequestError as exc:
            return JSONResponse({"error": exc.message}, status_code=exc.status_code)

        source_ip = request.client.host if request.client else None
        result = await dispatcher.dispatch(token, payload, source_ip=source_ip)
        if result.status_code >= 400:
            return JSONResponse({"error": result.message}, status_code=result.status_code)
        return JSONResponse({"status": result.message}, status_code=result.status_code)

    return app
