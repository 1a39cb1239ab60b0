"""API v1 router aggregator."""

from fastapi import APIRouter

from shipdesk.api.v1 import address, chitchats, health

api_router = APIRouter()

# Health check
api_router.include_router(health.router, prefix="/health", tags=["health"])

# Chit Chats proxy
api_router.include_router(chitchats.router, prefix="/chitchats", tags=["chitchats"])

# Address verification
api_router.include_router(address.router, prefix="/address", tags=["address"])
