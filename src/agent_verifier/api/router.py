"""Route aggregation -- combines all API sub-routers into a single router."""

from fastapi import APIRouter

from agent_verifier.api.health import router as health_router
from agent_verifier.api.verifications import router as verifications_router

api_router = APIRouter()
api_router.include_router(health_router)
api_router.include_router(verifications_router)
