import logging

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from starlette.concurrency import run_in_threadpool

from app.core.errors import StorageError
from app.db.session import engine
from app.services.storage.service import get_storage_adapter

logger = logging.getLogger(__name__)


async def check_database() -> bool:
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError):
        logger.error("Database connectivity check failed", exc_info=True)
        return False
    logger.info("Database connection established")
    return True


async def prepare_storage() -> bool:
    try:
        adapter = get_storage_adapter()
        info = await run_in_threadpool(adapter.check)
    except (StorageError, OSError, RuntimeError):
        logger.warning("Object storage is not ready", exc_info=True)
        return False
    logger.info("Object storage ready: provider=%s bucket=%s", info["provider"], info["bucket"])
    return True


async def init_db() -> None:
    """Startup checks; failures are logged and the API keeps serving."""
    await check_database()
    await prepare_storage()
