from dependency_injector import containers, providers
from .trade_service import TradeService
from .jobs.reconcile_pending_job import ReconcilePendingTradesJob


class TradesModule(containers.DeclarativeContainer):
    wiring_config = containers.WiringConfiguration(modules=[".controller"])
    root = providers.DependenciesContainer()

    service = providers.Factory(
        TradeService,
        db_client=root.db_client,
        publisher=root.publisher,
    )

    reconcile_pending_job = providers.Factory(
        ReconcilePendingTradesJob,
        trade_service=service,
        pending_timeout_minutes=root.config.provided.pending_trade_timeout_minutes,
    )
