from fastapi import APIRouter, Depends

from dependencies.auth import get_current_user

from .generation import router as generation_router, settings_router
from .health import router as health_router


# Public API router (health)
api_router = APIRouter()

api_router.include_router(health_router, tags=["health"])


# Protected routers: include with a router-level dependency so all routes
# require authentication by default. Use get_current_user dependency to
# surface the OAuth2 security scheme in OpenAPI as well.
protected_deps = [Depends(get_current_user)]
api_router.include_router(generation_router, dependencies=protected_deps)
api_router.include_router(settings_router, dependencies=protected_deps)
