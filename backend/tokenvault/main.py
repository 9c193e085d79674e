"""FastAPI application entrypoint for the tokenvault backend.

Sets up the application, middleware, error handlers and routes and provides
a lifespan context manager that initializes the database on startup and
disposes the engine on shutdown.

Configuration is read once into a :class:`Settings` instance in
:func:`create_app` and shared through ``app.state``.
"""

import asyncio
import time
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from tokenvault.api.routes.auth import router as auth_router
from tokenvault.api.routes.users import router as users_router
from tokenvault.config.config import Settings
from tokenvault.core.errors import register_exception_handlers
from tokenvault.core.logging import logger, setup_logging
from tokenvault.core.token_signer import TokenSigner
from tokenvault.db.session import create_engine, create_sessionmaker, initialize_database

API_PREFIX = "/api/v1"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context to run startup and shutdown routines.

    On startup this will attempt to create the metadata tables, retrying a
    few times if the DB isn't ready yet.

    Yields:
        None: Control is returned to FastAPI while the app is running.
    """

    logger.info("Starting up")

    max_retries = 5
    for attempt in range(max_retries):
        try:
            await initialize_database(app.state.engine)
            break
        except Exception as e:
            # NOTE: transient DB connectivity issues are retried to improve
            # startup robustness when services come up concurrently.
            if attempt < max_retries - 1:
                logger.warning(
                    "Database connection attempt {} failed: {}. Retrying..",
                    attempt + 1,
                    e,
                )
                await asyncio.sleep(2)
            else:
                logger.error("Could not connect to the database, giving up")
                raise

    yield

    logger.info("Shutting down")
    await app.state.engine.dispose()


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the application around one ``Settings`` instance.

    Args:
        settings: Explicit settings (tests); read from the environment when
            omitted.

    Returns:
        FastAPI: The configured application.
    """
    settings = settings or Settings()
    setup_logging(settings.LOG_LEVEL)

    app = FastAPI(title="tokenvault", lifespan=lifespan)

    app.state.settings = settings
    app.state.engine = create_engine(settings)
    app.state.sessionmaker = create_sessionmaker(app.state.engine)
    app.state.token_signer = TokenSigner(settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        logger.info(
            "{} {} {} {:.1f}ms",
            request.method,
            request.url.path,
            response.status_code,
            (time.perf_counter() - start) * 1000,
        )
        return response

    register_exception_handlers(app)

    @app.get("/")
    async def root():
        """Return a simple landing response."""
        return JSONResponse({"message": "tokenvault backend", "docs": "/docs"})

    @app.get(f"{API_PREFIX}/health")
    async def health():
        """Health check."""
        return {"status": "ok"}

    app.include_router(auth_router, prefix=API_PREFIX)
    app.include_router(users_router, prefix=API_PREFIX)

    return app


if __name__ == "__main__":
    uvicorn.run("tokenvault.main:create_app", factory=True, host="0.0.0.0", port=8000)
