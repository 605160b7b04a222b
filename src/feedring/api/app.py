"""FastAPI application entrypoint."""

from __future__ import annotations

from fastapi import FastAPI

from feedring import __version__
from feedring.api.routes import router


def create_app() -> FastAPI:
    app = FastAPI(
        title="feedring",
        description="Aggregated articles from Atom and RSS feeds",
        version=__version__,
    )
    app.include_router(router, prefix="/api")

    @app.get("/health")
    async def health() -> dict:
        return {"status": "ok"}

    return app


app = create_app()
