from loguru import logger
from tortoise import Tortoise

from ..core.config import get_settings

MODEL_MODULES = ["src.webp_uploads_service.app.models.attachment"]


async def init_db(db_url: str | None = None):
    try:
        if db_url is None:
            settings = get_settings()
            db_url = settings.absolute_database_url

            # Tortoise expects sqlite://<path>
            if db_url.startswith("sqlite:///"):
                db_url = db_url.replace("sqlite:///", "sqlite://")

        await Tortoise.init(
            db_url=db_url,
            modules={"models": MODEL_MODULES},
        )

        await Tortoise.generate_schemas()

        logger.info("Database initialized successfully")

    except Exception as e:
        logger.error(f"Error initializing database: {e}")
        raise


async def close_db():
    try:
        await Tortoise.close_connections()
        logger.info("Database connections closed")
    except Exception as e:
        logger.error(f"Error closing database: {e}")
        raise


async def check_database_health() -> bool:
    try:
        from tortoise import connections

        conn = connections.get("default")
        await conn.execute_query("SELECT 1")

        return True
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return False
