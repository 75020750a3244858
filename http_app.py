"""
HTTP surface for album archive generation.

    GET/POST /generate-zip?albumId=<id>

The route runs the same request mapping as the RunPod handler, so status
codes and error bodies match between the two entry points.
"""

import logging
import os
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.responses import JSONResponse

from runpod_handler import AlbumZipWorker

logger = logging.getLogger("AlbumZipWorker.http")

HTTP_HOST = os.environ.get("HTTP_HOST", "0.0.0.0")
HTTP_PORT = int(os.environ.get("HTTP_PORT", "8000"))


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build collaborators at startup, release them at shutdown."""
    app.state.worker = AlbumZipWorker.from_env()
    logger.info("Album archive worker started")
    try:
        yield
    finally:
        app.state.worker.close()
        logger.info("Album archive worker stopped")


app = FastAPI(
    title="Album Archive API",
    description="On-demand zip archives of album tracks",
    version="1.0.0",
    lifespan=lifespan,
)


def get_worker(request: Request) -> AlbumZipWorker:
    """Dependency for FastAPI routes"""
    return request.app.state.worker


@app.api_route("/generate-zip", methods=["GET", "POST"])
def generate_zip(albumId: Optional[List[str]] = Query(None),
                 worker: AlbumZipWorker = Depends(get_worker)):
    """
    Generate (or regenerate) the album archive and return a signed link.

    A repeated albumId is passed on as a list and rejected like any other
    non-string value.

    Response Codes:
        200: {downloadUrl}
        400: albumId missing or repeated
        404: album has no tracks
        500: generation failed
    """
    if not albumId:
        raw_request = {}
    elif len(albumId) == 1:
        raw_request = {"albumId": albumId[0]}
    else:
        raw_request = {"albumId": albumId}
    status_code, body = worker.respond(raw_request)
    return JSONResponse(status_code=status_code, content=body)


if __name__ == "__main__":
    import uvicorn

    logger.info(f"Starting Album Archive API on http://{HTTP_HOST}:{HTTP_PORT}...")
    uvicorn.run(app, host=HTTP_HOST, port=HTTP_PORT)
