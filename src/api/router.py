from fastapi import APIRouter

from src.api.endpoints import avatars

api_router = APIRouter(prefix="/api")

api_router.include_router(avatars.router, tags=["avatars"])
