from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from loguru import logger

from .app.api import public
from .app.core.config import get_settings
from .app.core.logging import setup_logging
from .app.db.database import close_db, init_db

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(settings)
    logger.info("Starting WebP Uploads Service...")

    database_dir = Path(settings.absolute_database_url.replace("sqlite:///", "")).parent
    for dir_path in [settings.absolute_uploads_dir, str(database_dir)]:
        Path(dir_path).mkdir(parents=True, exist_ok=True)

    logger.info("Storage directories initialized")

    await init_db()
    logger.info("Database initialized")
    logger.info("WebP Uploads Service startup complete")

    yield

    logger.info("Shutting down WebP Uploads Service...")
    await close_db()


def create_app() -> FastAPI:
    app = FastAPI(
        title=settings.APP_NAME,
        lifespan=lifespan,
        debug=settings.DEBUG,
    )

    # Configure CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["*"],
    )

    app.include_router(public.router, prefix="/api", tags=["public"])

    # Serve uploaded files and their derivatives
    Path(settings.absolute_uploads_dir).mkdir(parents=True, exist_ok=True)
    app.mount(
        "/uploads",
        StaticFiles(directory=settings.absolute_uploads_dir),
        name="uploads",
    )

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "src.webp_uploads_service.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level="info",
    )
