"""FastAPI application entry point."""

from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from nudgeflow.infrastructure.logging import configure_logging
from nudgeflow.infrastructure.runtime import Runtime, build_runtime
from nudgeflow.infrastructure.settings import get_settings


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the runtime on startup and stop its jobs on shutdown."""
    settings = get_settings()
    logger.info(f"Starting {settings.app_name} v{settings.app_version}")
    logger.info(f"Environment: {settings.environment}")

    owned = app.state.runtime is None
    if owned:
        app.state.runtime = build_runtime(settings)
        app.state.runtime.start()

    yield

    if owned:
        logger.info("Shutting down...")
        app.state.runtime.stop()
        logger.info("Shutdown complete")


def create_app(runtime: Runtime | None = None) -> FastAPI:
    """Create the app; a pre-built runtime is used as-is and never started or stopped here."""
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Merchant-onboarding thread tracking and reminder escalation",
        lifespan=lifespan,
    )
    app.state.runtime = runtime

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    from nudgeflow.api.routes import router

    app.include_router(router)

    return app


# Create app instance
app = create_app()


def main() -> None:
    settings = get_settings()
    configure_logging(settings.log_level)
    uvicorn.run(app, host=settings.api_host, port=settings.api_port)


if __name__ == "__main__":
    main()
