from dependency_injector import containers, providers
from trade_pipeline.infrastructure.database.client import DatabaseClient
from trade_pipeline.infrastructure.config.settings import Settings
from trade_pipeline.infrastructure.messaging.rabbitmq_publisher import RabbitMQPublisher
from trade_pipeline.infrastructure.messaging.noop_publisher import NoOpPublisher
from trade_pipeline.infrastructure.scheduler.scheduler import JobScheduler


class Container(containers.DeclarativeContainer):
    config = providers.Singleton(Settings)

    db_client = providers.Singleton(
        DatabaseClient,
        db_url=config.provided.async_database_url,
        pool_size=config.provided.db_pool_size,
        max_overflow=config.provided.db_max_overflow,
        pool_timeout=config.provided.db_pool_timeout,
        pool_recycle=config.provided.db_pool_recycle,
        echo=config.provided.db_echo,
    )

    # overridden with `fallback_publisher` at startup when the broker is unreachable
    publisher = providers.Singleton(
        RabbitMQPublisher,
        config=config,
    )

    fallback_publisher = providers.Singleton(
        NoOpPublisher,
    )

    scheduler = providers.Singleton(
        JobScheduler,
        timezone=config.provided.scheduler_timezone,
    )


container = Container()
