"""V1 API router -- aggregates all v1 endpoint routers."""

from __future__ import annotations

from fastapi import APIRouter

from src.lastword.api.v1 import health, interview

router = APIRouter()

router.include_router(health.router)
router.include_router(interview.router)
