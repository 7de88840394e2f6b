"""FastAPI application for the face overlay engine.

    facetrack-api --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

import argparse
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from facetrack.api.routes import config, health, overlay, stats, stream

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    """Stop the overlay engine (closing the camera) when the app shuts down."""

    from facetrack.api.services.state import stop_engine

    yield
    logger.info("Shutting down overlay engine")
    stop_engine()


app = FastAPI(title="FaceTrack Overlay API", lifespan=lifespan)

# Overlay clients (web previews, device shells) run on other origins.
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

for module in (health, config, overlay, stats, stream):
    app.include_router(module.router)


def main(argv: list[str] | None = None) -> None:
    p = argparse.ArgumentParser(description="Serve the face overlay API.")
    p.add_argument("--host", default="0.0.0.0")
    p.add_argument("--port", type=int, default=8000)
    p.add_argument("--log-level", default="info")
    args = p.parse_args(argv)
    logging.basicConfig(
        level=args.log_level.upper(), format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )
    uvicorn.run(app, host=args.host, port=args.port, log_level=args.log_level)


if __name__ == "__main__":
    main()
