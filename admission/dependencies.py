"""FastAPI dependencies."""

from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from admission.core.security import decode_access_token
from admission.database import get_db
from admission.services.admission_service import AdmissionService

# Security
security = HTTPBearer()


async def get_current_actor_id(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(security)],
) -> str:
    """
    Extract the acting staff member's ID from the bearer token.

    Args:
        credentials: Bearer token credentials

    Returns:
        Opaque actor ID from the ``sub`` claim

    Raises:
        HTTPException: If token is invalid or expired
    """
    payload = decode_access_token(credentials.credentials)

    actor_id = payload.get("sub") if payload else None
    if not isinstance(actor_id, str) or not actor_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return actor_id


async def get_admission_service(
    db: Annotated[AsyncSession, Depends(get_db)],
) -> AdmissionService:
    """Build the admission service for the request's database session."""
    return AdmissionService(db)


# Type aliases for dependency injection
CurrentActorId = Annotated[str, Depends(get_current_actor_id)]
Admission = Annotated[AdmissionService, Depends(get_admission_service)]
