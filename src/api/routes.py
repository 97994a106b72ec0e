from fastapi import FastAPI

from src.api.main_endpoints.router import main_router
from src.api.router import api_router


def include_routers(app: FastAPI):
    app.include_router(main_router)
    app.include_router(api_router)
