"""Shared API dependencies for authentication and service access."""

from typing import Annotated, Any

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from webhook_relay.core.settings import settings
from webhook_relay.services.admin import AdminService
from webhook_relay.services.delivery import DeliveryPipeline
from webhook_relay.services.snapshot_service import SnapshotService

ADMIN_JWT_ALGORITHM = "HS256"

# HTTP Bearer scheme for JWT authentication
bearer_scheme = HTTPBearer()


def require_admin(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(bearer_scheme)],
) -> dict[str, Any]:
    """Validate the admin bearer token and return its claims.

    Raises:
        HTTPException: 503 when no secret is configured, 401 for a bad token.
    """
    if not settings.admin_api_secret:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Admin API is not configured",
        )
    try:
        return jwt.decode(
            credentials.credentials,
            settings.admin_api_secret,
            algorithms=[ADMIN_JWT_ALGORITHM],
            audience=settings.admin_api_audience,
        )
    except JWTError as err:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
        ) from err


def get_pipeline(request: Request) -> DeliveryPipeline:
    return request.app.state.pipeline


def get_admin_service(request: Request) -> AdminService:
    return request.app.state.admin_service


def get_snapshot_service(request: Request) -> SnapshotService:
    return request.app.state.snapshot_service


# Type aliases for dependencies
AdminClaimsDep = Annotated[dict[str, Any], Depends(require_admin)]
PipelineDep = Annotated[DeliveryPipeline, Depends(get_pipeline)]
AdminServiceDep = Annotated[AdminService, Depends(get_admin_service)]
SnapshotServiceDep = Annotated[SnapshotService, Depends(get_snapshot_service)]
