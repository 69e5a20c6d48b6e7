"""
Relay Drop: FastAPI relay entry point.

Serves the rendezvous API (create/join/leave) that lets a sender and a
receiver find the same session. The relay never carries file bytes.
"""

import logging
import time
from collections import deque
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from api.routes import router
from config import APP_NAME, LOG_FORMAT, LOG_LEVEL, RELAY_HOST, RELAY_LOG_SIZE, RELAY_PORT
from rendezvous.registry import SessionRegistry

logger = logging.getLogger(__name__)


def create_app(registry: SessionRegistry | None = None) -> FastAPI:
    """Build the relay application around a session registry."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Relay ready")
        yield
        logger.info(f"Relay stopped with {len(app.state.registry)} session(s)")

    app = FastAPI(title=APP_NAME, version="1.0.0", lifespan=lifespan)
    app.state.registry = registry if registry is not None else SessionRegistry()
    app.state.request_log = deque(maxlen=RELAY_LOG_SIZE)

    @app.middleware("http")
    async def log_request(request: Request, call_next):
        client = request.client
        caller = f"{client.host}:{client.port}" if client else "unknown"
        line = f"{int(time.time())}: {request.method} to {request.url.path} from {caller}"
        app.state.request_log.append(line)
        logger.info(line)
        return await call_next(request)

    app.include_router(router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(level=LOG_LEVEL, format=LOG_FORMAT)
    uvicorn.run(
        app,
        host=RELAY_HOST,
        port=RELAY_PORT,
        log_level="info",
    )
