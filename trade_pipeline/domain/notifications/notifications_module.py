from dependency_injector import containers, providers
from .consumer import TradeNotificationConsumer
from .handlers import LoggingNotificationHandler


class NotificationsModule(containers.DeclarativeContainer):
    root = providers.DependenciesContainer()

    handler = providers.Singleton(
        LoggingNotificationHandler,
    )

    consumer = providers.Singleton(
        TradeNotificationConsumer,
        config=root.config,
        handler=handler,
    )
