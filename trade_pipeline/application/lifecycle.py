from contextlib import asynccontextmanager
import logging
from fastapi import FastAPI
from trade_pipeline.application.container import container
from trade_pipeline.domain.trades.errors import PublisherConnectionError
from trade_pipeline.domain.trades.trades_module import TradesModule
from trade_pipeline.infrastructure.messaging.publisher_base import TradePublisher
from trade_pipeline.infrastructure.scheduler.scheduler import JobScheduler
from trade_pipeline.infrastructure.scheduler.cron_expression_enum import CronSchedule

logger = logging.getLogger(__name__)


async def connect_publisher() -> TradePublisher:
    """
    Connect the RabbitMQ publisher, or swap in the no-op publisher when the
    broker is disabled or unreachable. Trades keep executing either way.
    """
    config = container.config()

    if not config.rabbitmq_enabled:
        logger.warning("[RABBITMQ] Disabled by configuration - continuing without message queue")
        container.publisher.override(container.fallback_publisher)
        return container.publisher()

    try:
        await container.publisher().connect()
        logger.info("[RABBITMQ] Publisher connected")
    except PublisherConnectionError as e:
        logger.warning(
            f"[RABBITMQ] Could not initialize RabbitMQ publisher ({e}) - "
            f"continuing without message queue")
        container.publisher.override(container.fallback_publisher)

    return container.publisher()


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting application...")
    config = container.config()
    scheduler: JobScheduler = container.scheduler()

    try:
        # 1) Database first
        await container.db_client().init()
        logger.info("Database initialized successfully")

        # 2) Message broker (falls back to logging only)
        await connect_publisher()

        # 3) Scheduler + pending trade reconciliation
        if config.scheduler_enabled:
            await scheduler.start()
            trades_module: TradesModule = app.state.trades_module
            reconcile_job = trades_module.reconcile_pending_job()
            scheduler.add_cron_job(
                reconcile_job.run,
                CronSchedule.from_name(config.reconcile_schedule),
                job_id="reconcile_pending_trades_job",
            )

        yield

    except Exception as e:
        logger.error(f"Error during startup: {str(e)}")
        raise

    finally:
        logger.info("Shutting down application...")

        try:
            await scheduler.shutdown()
        except Exception as e:
            logger.error(f"Error shutting down scheduler: {e}")

        await container.publisher().close()
        container.publisher.reset_override()

        await container.db_client().close()
        logger.info("Application shut down successfully")
