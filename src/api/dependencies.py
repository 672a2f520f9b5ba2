"""
FastAPI Dependencies for authentication and service wiring.
"""

import logging

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

from src.api.auth import ActorToken, AuthService
from src.models.database import get_db
from src.services.quit_plan_service import QuitPlanService

logger = logging.getLogger(__name__)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/token", auto_error=False)

_auth_service: AuthService | None = None


def get_auth_service() -> AuthService:
    """Get or create the AuthService singleton (reads QUITPLAN_API_SECRET_KEY)."""
    global _auth_service
    if _auth_service is None:
        _auth_service = AuthService()
    return _auth_service


def get_current_actor(
    token: str = Depends(oauth2_scheme),
    auth_service: AuthService = Depends(get_auth_service),
) -> ActorToken:
    """
    Dependency to get the calling actor from the bearer token.

    Raises HTTPException 401 if the token is missing or invalid.
    """
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    actor = auth_service.decode_token(token)
    if not actor or actor.is_expired():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return actor


def get_plan_service(db: Session = Depends(get_db)) -> QuitPlanService:
    """Dependency: a QuitPlanService bound to the request's session."""
    return QuitPlanService(db)
