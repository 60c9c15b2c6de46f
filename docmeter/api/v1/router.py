"""Version 1 API router."""
from fastapi import APIRouter

from docmeter.api.v1.endpoints import auth, conversions, payments


api_router = APIRouter()
api_router.include_router(auth.router)
api_router.include_router(conversions.router)
api_router.include_router(payments.router)
