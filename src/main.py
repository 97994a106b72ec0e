import logging
from contextlib import asynccontextmanager

import sentry_sdk
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator
from sentry_sdk.integrations.logging import LoggingIntegration

from src.api.routes import include_routers
from src.config import config
from src.config.logger import setup_logging
from src.core.dependencies import service_lifespan
from src.middlewares.restrict_docs import RestrictDocsAccessMiddleware
from src.version import APP_VERSION


@asynccontextmanager
async def lifespan(app: FastAPI):
    async with service_lifespan():
        logger.info(f"Старт {config.app.service_name} {APP_VERSION} на порту {config.app.port}")
        yield
    logger.info("Сервер остановлен")


# Логи уровня ERROR уходят в Sentry как события, остальные только breadcrumbs
sentry_logging = LoggingIntegration(
    level=logging.INFO,
    event_level=logging.ERROR
)

if config.app.is_production and config.app.sentry_dsn:
    sentry_sdk.init(
        dsn=config.app.sentry_dsn,
        integrations=[sentry_logging],
        environment=config.app.environment,
        release=APP_VERSION,
        traces_sample_rate=0.01,
        profiles_sample_rate=0,
        max_breadcrumbs=20,
        attach_stacktrace=False,
        ignore_errors=[KeyboardInterrupt, SystemExit]
    )

app = FastAPI(lifespan=lifespan,
              title="Gainly Avatars API",
              description="API для управления аватарками пользователей",
              docs_url="/docs" if config.app.enable_docs else None,
              redoc_url="/redoc" if config.app.enable_docs else None,
              openapi_url="/openapi.json" if config.app.enable_docs else None,
              version=APP_VERSION
              )

logger = setup_logging(
    app,
    syslog_host=config.logging.syslog_host,
    syslog_port=config.logging.syslog_port,
    graylog_host=config.logging.graylog_host,
    graylog_port=config.logging.graylog_port,
    log_level=config.app.log_level,
    syslog_enabled=config.logging.syslog_enabled,
    graylog_enabled=config.logging.graylog_enabled,
    service_name=config.app.service_name
)

if config.app.enable_docs and config.app.restrict_docs:
    app.add_middleware(RestrictDocsAccessMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

include_routers(app)

instrumentator = Instrumentator(excluded_handlers=["/metrics", "/health"])
instrumentator.instrument(app).expose(app)


if __name__ == '__main__':
    import uvicorn

    uvicorn.run(app, host=config.app.host, port=config.app.port, log_level=config.app.log_level.lower())
