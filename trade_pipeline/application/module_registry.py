from fastapi import FastAPI
from dependency_injector import providers
from trade_pipeline.application.container import container as root_container


def register_modules(app: FastAPI):
    config = root_container.config()

    # Register Health Module
    from trade_pipeline.domain.health.module import HealthModule
    from trade_pipeline.domain.health.controller import router as health_router

    health_container = HealthModule(
        root=providers.DependenciesContainer(
            db_client=root_container.db_client,
            publisher=root_container.publisher,
        )
    )
    health_container.wire(modules=["trade_pipeline.domain.health.controller"])

    app.include_router(health_router)
    app.state.health_container = health_container

    # Register Trades Module
    from trade_pipeline.domain.trades.trades_module import TradesModule
    from trade_pipeline.domain.trades.controller import router as trades_router

    trades_module = TradesModule(
        root=providers.DependenciesContainer(
            db_client=root_container.db_client,
            publisher=root_container.publisher,
            config=root_container.config,
        ),
    )
    trades_module.wire(modules=["trade_pipeline.domain.trades.controller"])

    app.include_router(trades_router, prefix=config.api_prefix)
    app.state.trades_module = trades_module
