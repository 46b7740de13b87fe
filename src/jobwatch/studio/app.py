from __future__ import annotations

from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Dict, Optional

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from .. import __version__
from ..backend import get_backend
from ..backend.base import JobBackend
from ..profile import load_profile
from ..tracking.config import TrackingConfig
from ..tracking.registry import TrackerRegistry
from .api import create_tracking_router


def create_app(
    *,
    profile_path: Optional[Path] = None,
    profile: Optional[Dict[str, Any]] = None,
    backend: Optional[JobBackend] = None,
) -> FastAPI:
    profile = profile if profile is not None else load_profile(profile_path)
    registry = TrackerRegistry(
        backend if backend is not None else get_backend(profile),
        config=TrackingConfig.from_profile(profile),
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        registry.cancel_all()

    app = FastAPI(title="jobwatch", version=__version__, lifespan=lifespan)
    app.state.registry = registry
    app.include_router(create_tracking_router(registry=registry))

    @app.get("/api/health")
    def api_health() -> JSONResponse:
        return JSONResponse({"ok": True, "tracked": len(registry)})

    return app
