import logging
import re
import socket
import sys
import time
import uuid
from logging.handlers import SysLogHandler
from typing import Callable, List, Optional

import graypy
from fastapi import FastAPI, Request, Response
from rfc5424logging import Rfc5424SysLogHandler
from starlette.middleware.base import BaseHTTPMiddleware

EXCLUDED_PATHS = {"/metrics", "/health"}
REQUEST_ID_HEADER = "X-Request-ID"

# Библиотеки, которые на DEBUG пишут тело каждого запроса к R2 и сервису пользователей
NOISY_LOGGERS = ("botocore", "aiobotocore", "boto3", "aioboto3", "urllib3", "httpx", "httpcore")

_BEARER_RE = re.compile(r"(Bearer\s+)[\w\-.~+/=]+", re.IGNORECASE)


class TokenMaskingFilter(logging.Filter):
    """Скрывает bearer-токены, случайно попавшие в текст записи."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        masked = _BEARER_RE.sub(r"\1***", message)
        if masked != message:
            record.msg = masked
            record.args = None
        return True


class ExcludedPathsFilter(logging.Filter):
    """Убирает из access-лога uvicorn служебные запросы."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        return not any(path in message for path in EXCLUDED_PATHS)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Логирует запросы к API аватарок.
    ID запроса берется из X-Request-ID клиента или генерируется, имя пользователя
    оставляет в request.state зависимость авторизации.
    """
    def __init__(self, app: FastAPI, logger: logging.Logger):
        super().__init__(app)
        self.logger = logger

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path in EXCLUDED_PATHS:
            return await call_next(request)

        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        request.state.request_id = request_id
        client = request.client.host if request.client else "Unknown"
        started = time.perf_counter()

        self.logger.info(f"Request started | ID: {request_id} | {request.method} {request.url.path} | Client: {client}")

        try:
            response = await call_next(request)
        except Exception as exc:
            self.logger.exception(
                f"Request failed | ID: {request_id} | User: {_username(request)} | "
                f"Duration: {time.perf_counter() - started:.4f}s | Error: {exc}"
            )
            raise

        self.logger.info(
            f"Request completed | ID: {request_id} | User: {_username(request)} | "
            f"Status: {response.status_code} | Duration: {time.perf_counter() - started:.4f}s"
        )
        response.headers[REQUEST_ID_HEADER] = request_id
        return response


def _username(request: Request) -> str:
    return getattr(request.state, "username", None) or "-"


def _remote_handlers(
        service_name: str,
        syslog_enabled: bool,
        syslog_host: str,
        syslog_port: int,
        syslog_facility: int,
        graylog_enabled: bool,
        graylog_host: str,
        graylog_port: int,
) -> List[logging.Handler]:
    handlers: List[logging.Handler] = []

    if graylog_enabled:
        handlers.append(graypy.GELFUDPHandler(graylog_host, graylog_port, localname=service_name))

    if syslog_enabled:
        try:
            handler = Rfc5424SysLogHandler(
                address=(syslog_host, syslog_port),
                socktype=socket.SOCK_STREAM,
                appname=service_name,
                msg_as_utf8=True,
                facility=syslog_facility
            )
        except OSError as e:
            logging.getLogger(__name__).warning(f"Syslog handler disabled: {e}")
        else:
            handler.setLevel(logging.DEBUG)
            handlers.append(handler)

    return handlers


def setup_logging(
        app: Optional[FastAPI] = None,
        service_name: str = "gainly-avatars",
        log_level: str = "INFO",
        syslog_enabled: bool = False,
        syslog_host: str = "localhost",
        syslog_port: int = 1514,
        syslog_facility: int = SysLogHandler.LOG_USER,
        graylog_enabled: bool = False,
        graylog_host: str = "localhost",
        graylog_port: int = 12201,
        add_middleware: bool = True
) -> logging.Logger:
    """
    Настраивает логирование сервиса аватарок: консоль, Graylog и Syslog (RFC5424).
    Все обработчики получают TokenMaskingFilter.

    Returns:
        Логгер сервиса, им же пишет RequestLoggingMiddleware.
    """
    for noisy in NOISY_LOGGERS:
        logging.getLogger(noisy).setLevel(logging.WARNING)

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(logging.Formatter(
        "%(asctime)s | %(levelname)s | %(name)s:%(lineno)d | "
        f"service={service_name} | %(message)s"
    ))

    handlers = [console_handler] + _remote_handlers(
        service_name,
        syslog_enabled, syslog_host, syslog_port, syslog_facility,
        graylog_enabled, graylog_host, graylog_port,
    )
    token_filter = TokenMaskingFilter()
    for handler in handlers:
        handler.addFilter(token_filter)
        root_logger.addHandler(handler)

    logging.getLogger("uvicorn.access").addFilter(ExcludedPathsFilter())

    logger = logging.getLogger(service_name)

    if app and add_middleware:
        app.add_middleware(RequestLoggingMiddleware, logger=logger)

    return logger
