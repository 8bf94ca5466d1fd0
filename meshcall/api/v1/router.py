from fastapi import APIRouter

from meshcall.api.v1.endpoints import webrtc

api_router = APIRouter(prefix="/api/v1")

api_router.include_router(webrtc.router)
