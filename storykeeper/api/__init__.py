from fastapi import APIRouter
from storykeeper.api.routes import router, stream_router

api_router = APIRouter()
api_router.include_router(stream_router)
api_router.include_router(router)
