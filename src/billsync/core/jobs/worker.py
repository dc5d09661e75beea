"""ARQ worker configuration.

Defines the worker settings including registered jobs and
startup/shutdown hooks.
"""

from typing import Any, ClassVar

import httpx
import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from billsync.config import settings
from billsync.core.jobs.registry import get_redis_settings
from billsync.core.jobs.tasks.notifications import send_payment_failed_email
from billsync.core.logging import configure_logging


# Seconds to wait for the email provider
EMAIL_HTTP_TIMEOUT = 10.0


async def startup(ctx: dict[str, Any]) -> None:
    """Initialize resources shared by all jobs.

    Args:
        ctx: Worker context dict (shared across all jobs)
    """
    configure_logging()
    log = structlog.get_logger()
    log.info("worker_startup", environment=settings.environment)

    engine = create_async_engine(
        settings.async_database_url,
        pool_size=5,
        max_overflow=10,
        echo=settings.database_echo,
    )

    ctx["db_engine"] = engine
    ctx["db_session_factory"] = async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    ctx["http_client"] = httpx.AsyncClient(timeout=EMAIL_HTTP_TIMEOUT)

    log.info("worker_startup_complete")


async def shutdown(ctx: dict[str, Any]) -> None:
    """Cleanup resources when the worker stops.

    Args:
        ctx: Worker context dict
    """
    log = structlog.get_logger()
    log.info("worker_shutdown")

    client = ctx.get("http_client")
    if client:
        await client.aclose()

    engine = ctx.get("db_engine")
    if engine:
        await engine.dispose()
        log.info("database_engine_disposed")

    log.info("worker_shutdown_complete")


class WorkerSettings:
    """ARQ worker settings.

    Run the worker with:
        arq billsync.core.jobs.worker.WorkerSettings
    """

    functions: ClassVar[list[Any]] = [
        send_payment_failed_email,
    ]

    on_startup = startup
    on_shutdown = shutdown

    redis_settings = get_redis_settings()

    max_jobs = 10
    job_timeout = 60
    keep_result = 3600
    retry_jobs = True
    max_tries = 5
