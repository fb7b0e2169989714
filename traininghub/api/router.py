"""Master API router — includes all sub-routers."""

from fastapi import APIRouter

from .routes.exports import router as exports_router

api_router = APIRouter(prefix="/api/v1")

api_router.include_router(exports_router)
