"""Main application entry point."""

from __future__ import annotations

from deepdive.api.app import create_api_app
from deepdive.core.config import settings


# Application instance
app = create_api_app()


def run() -> None:
    """Serve the API with uvicorn (``deepdive`` console script)."""
    import uvicorn

    uvicorn.run(
        "deepdive.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
