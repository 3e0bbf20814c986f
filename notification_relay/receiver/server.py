"""
Reference webhook receiver

Standalone sink for relayed notifications. Appends every accepted request
as one JSON line to a log file. Not part of the relay core.
"""
import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Union

import uvicorn
from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from notification_relay import settings
from notification_relay.logging_conf import logger


class ReceiverError(Exception):
    """Request rejected with a JSON error body."""

    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.message = message


def append_log(log_file: Path, entry: dict) -> None:
    """Append one JSON line, creating the directory on first use."""
    log_file.parent.mkdir(parents=True, exist_ok=True)
    with open(log_file, "a", encoding="utf-8") as f:
        f.write(json.dumps(entry, ensure_ascii=False) + "\n")


def create_app(
    webhook_path: Optional[str] = None,
    bearer_token: Optional[str] = None,
    log_file: Optional[Union[str, Path]] = None,
    json_limit: Optional[int] = None,
) -> FastAPI:
    """
    Build the receiver application.

    Args:
        webhook_path: Route accepting POSTed notifications
        bearer_token: Required token; empty disables the check
        log_file: JSON-lines file receiving each request
        json_limit: Maximum body size in bytes
    """
    webhook_path = webhook_path or settings.WEBHOOK_PATH
    bearer_token = settings.WEBHOOK_BEARER_TOKEN if bearer_token is None else bearer_token
    log_file = Path(log_file) if log_file is not None else settings.WEBHOOK_LOG_FILE
    json_limit = json_limit or settings.JSON_LIMIT

    app = FastAPI(title="Notification Relay Webhook Receiver")

    @app.exception_handler(ReceiverError)
    async def receiver_error_handler(request: Request, exc: ReceiverError):
        return JSONResponse(status_code=exc.status_code, content={"ok": False, "message": exc.message})

    async def require_bearer_auth(request: Request) -> None:
        if not bearer_token:
            return
        auth_header = request.headers.get("authorization", "")
        if not auth_header.startswith("Bearer "):
            raise ReceiverError(401, "Authorization header must use Bearer <token> format.")
        if auth_header[7:].strip() != bearer_token:
            raise ReceiverError(403, "Invalid bearer token.")

    async def read_json_body(request: Request):
        raw = await request.body()
        if len(raw) > json_limit:
            raise ReceiverError(413, "Request body too large.")
        if "json" not in request.headers.get("content-type", "") or not raw:
            return {}
        try:
            body = json.loads(raw)
        except (ValueError, UnicodeDecodeError):
            raise ReceiverError(400, "Invalid JSON body.")
        if not isinstance(body, (dict, list)):
            raise ReceiverError(400, "Invalid JSON body.")
        return body

    @app.get("/health")
    async def health():
        """Liveness check."""
        return {"ok": True, "service": "webhook-api"}

    @app.post(webhook_path, dependencies=[Depends(require_bearer_auth)])
    async def receive(request: Request):
        """Log one delivered notification."""
        body = await read_json_body(request)
        safe_headers = {k: v for k, v in request.headers.items() if k.lower() != "authorization"}
        path = request.url.path
        if request.url.query:
            path = f"{path}?{request.url.query}"

        entry = {
            "receivedAt": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "method": request.method,
            "path": path,
            "ip": request.client.host if request.client else None,
            "headers": safe_headers,
            "body": body,
        }

        try:
            await run_in_threadpool(append_log, log_file, entry)
        except OSError as e:
            logger.error(f"Failed to write webhook log {log_file}: {e}")
            return JSONResponse(
                status_code=500,
                content={"ok": False, "message": "Failed to write webhook log.", "error": str(e)},
            )

        return {"ok": True, "message": "Webhook received."}

    return app


def serve(host: Optional[str] = None, port: Optional[int] = None) -> None:
    """Run the receiver with uvicorn."""
    host = host or settings.HOST
    port = port or settings.PORT
    logger.info(f"Webhook receiver on http://{host}:{port}")
    logger.info(f"Endpoint webhook: POST {settings.WEBHOOK_PATH}")
    logger.info("Bearer auth: enabled" if settings.WEBHOOK_BEARER_TOKEN else "Bearer auth: disabled (no token configured)")
    logger.info(f"Log file: {settings.WEBHOOK_LOG_FILE}")
    uvicorn.run(create_app(), host=host, port=port, log_config=None)


if __name__ == "__main__":
    serve()
