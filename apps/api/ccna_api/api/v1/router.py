from __future__ import annotations

from fastapi import APIRouter

from ccna_api.api.v1.endpoints import learning, tutor

api_router = APIRouter()
api_router.include_router(tutor.router)
api_router.include_router(learning.router)
