"""
Archive DICOMweb Service

Read-only DICOMweb (WADO-RS) access to an imaging archive organised as
projects, sessions, scans and file resources.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.config import get_settings
from app.database import Base, engine
from app.models import archive  # noqa: F401  (registers tables on Base.metadata)
from app.routers import dicomweb

settings = get_settings()

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create the archive catalog tables on startup."""
    Base.metadata.create_all(bind=engine)
    logger.info(f"Serving archive at {settings.archive_root}")
    yield


app = FastAPI(
    title="Archive DICOMweb Service",
    description=(
        "Read-only DICOMweb (WADO-RS) over an imaging archive: studies, series, "
        "instances, metadata, frames and rendered previews."
    ),
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ── DICOMweb ───────────────────────────────────────────────────────
app.include_router(dicomweb.router, prefix="/dicomweb", tags=["DICOMweb"])


@app.get("/health", tags=["Health"])
def health_check():
    return {"status": "healthy", "service": "archive-dicomweb"}


def run_server() -> None:
    """Run the service with uvicorn."""
    import uvicorn

    logger.info(f"Starting archive DICOMweb service at http://{settings.host}:{settings.port}")
    uvicorn.run(
        "main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run_server()
