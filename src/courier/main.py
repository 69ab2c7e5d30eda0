"""FastAPI application entry point."""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api.routes import health, journey, sync
from .config import settings
from .runtime import DriverRuntime, build_runtime


def create_app(runtime: DriverRuntime | None = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        active = runtime or build_runtime()
        app.state.runtime = active
        await active.start()
        try:
            yield
        finally:
            await active.aclose()

    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    if runtime is not None:
        app.state.runtime = runtime
    if settings.frontend_allowed_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=list(settings.frontend_allowed_origins),
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    @app.get("/")
    def root():
        return {
            "service": settings.app_name,
            "status": "running",
            "api_prefix": settings.api_prefix,
            "health": f"{settings.api_prefix}/health",
            "docs": "/docs",
        }

    app.include_router(health.router, prefix=settings.api_prefix)
    app.include_router(journey.router, prefix=settings.api_prefix)
    app.include_router(sync.router, prefix=settings.api_prefix)
    return app


app = create_app()
