from fastapi import APIRouter
from starlette.responses import PlainTextResponse

from src.version import APP_VERSION

router = APIRouter()


@router.get("/health", response_class=PlainTextResponse, summary="Проверка доступности")
async def health_check():
    return "OK"


@router.get("/version", summary="Версия сервиса")
async def read_version():
    return {"version": APP_VERSION}
