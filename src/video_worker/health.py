"""Liveness endpoint served next to the queue listener."""

import logging
import threading

import uvicorn
from fastapi import FastAPI
from fastapi.responses import PlainTextResponse

logger = logging.getLogger(__name__)

ALL_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


def create_health_app() -> FastAPI:
    """App answering 200 OK to any request on any path."""
    app = FastAPI(docs_url=None, redoc_url=None, openapi_url=None)

    @app.api_route("/", methods=ALL_METHODS, response_class=PlainTextResponse)
    @app.api_route("/{path:path}", methods=ALL_METHODS, response_class=PlainTextResponse)
    async def health_check(path: str = ""):
        return "OK"

    return app


def start_health_server(host: str = "0.0.0.0", port: int = 8080) -> threading.Thread:
    """Serve the health app from a daemon thread."""
    config = uvicorn.Config(create_health_app(), host=host, port=port, log_level="warning")
    server = uvicorn.Server(config)

    # uvicorn leaves signal handling alone outside the main thread
    thread = threading.Thread(target=server.run, name="health-server", daemon=True)
    thread.start()
    logger.info("Starting HTTP server on %s:%d", host, port)
    return thread
