"""Main API router that aggregates all route modules."""

from fastapi import APIRouter

from usersvc.api import auth, health, profiles, roles, users, verifications

api_router = APIRouter()

api_router.include_router(health.router, prefix="/health", tags=["health"])
api_router.include_router(auth.router, prefix="/auth", tags=["auth"])
api_router.include_router(users.router, prefix="/users", tags=["users"])
api_router.include_router(profiles.router, prefix="/profiles", tags=["profiles"])
api_router.include_router(roles.router, prefix="/roles", tags=["roles"])
api_router.include_router(
    verifications.router, prefix="/verifications", tags=["verifications"]
)
