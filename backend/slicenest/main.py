"""
Main application module for the slicing backend.

This file sets up the FastAPI application, configures CORS so a browser
frontend can make cross-origin requests and exposes a simple health
check endpoint.  Routers for slicing, nesting and background jobs are
included under the `/api` namespace.

The service holds no persisted state: meshes arrive in the request body
and results are returned (or kept in the in-memory job registry).
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api.routes_jobs import router as jobs_router
from .api.routes_slices import router as slices_router


def create_app() -> FastAPI:
    """Factory to create and configure the FastAPI application.

    Returns:
        FastAPI: The configured FastAPI application instance.
    """
    app = FastAPI(title="slicenest")

    # Allow all origins by default.  In production you should restrict
    # this to the domains that are allowed to access your API.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/api/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    app.include_router(slices_router, prefix="/api", tags=["slices"])
    app.include_router(jobs_router, prefix="/api", tags=["jobs"])

    return app


# Uvicorn imports this when running `uvicorn slicenest.main:app` from backend/
app = create_app()
