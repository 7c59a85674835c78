import logging
import logging.config

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from trade_pipeline.application.container import container
from trade_pipeline.application.lifecycle import lifespan
from trade_pipeline.application.module_registry import register_modules

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    config = container.config()
    logging.config.dictConfig(config.get_logging_config())

    app = FastAPI(
        title=config.app_name,
        version=config.app_version,
        debug=config.debug,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[o.strip() for o in config.cors_origins.split(",") if o.strip()],
        allow_credentials=config.cors_allow_credentials,
        allow_methods=config.cors_allow_methods,
        allow_headers=config.cors_allow_headers,
    )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        logger.warning(f"Invalid request to {request.url.path}: {exc.errors()}")
        return JSONResponse(
            status_code=400,
            content={"message": "Invalid request", "errors": jsonable_encoder(exc.errors())},
        )

    register_modules(app)
    logger.info(f"{config.app_name} v{config.app_version} ({config.environment.value}) configured")
    return app


app = create_app()


def run() -> None:
    config = container.config()
    uvicorn.run(
        "trade_pipeline.main:app",
        host=config.api_host,
        port=config.api_port,
        log_config=None,
    )


if __name__ == "__main__":
    run()
