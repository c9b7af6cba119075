"""
Session bridge: resolves the caller from the session issued by the auth service.

The auth service signs a JWT with ``AUTH_SECRET_KEY``: ``sub`` is the user id and
the optional ``org`` claim is the organization currently selected in the UI. It
arrives either as a Bearer token or in the session cookie.
"""
import logging
from typing import Optional

from fastapi import Depends, Request, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.core.database import get_db
from app.core.errors import AuthenticationRequired
from app.models import User

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


class SessionData:
    """Signed-in user plus the organization selected for this session, if any."""
    def __init__(self, user: User, active_organization_id: Optional[str] = None):
        self.user = user
        self.active_organization_id = active_organization_id


def _read_token(request: Request, bearer: Optional[HTTPAuthorizationCredentials]) -> Optional[str]:
    if bearer and bearer.credentials:
        return bearer.credentials
    return request.cookies.get(get_settings().SESSION_COOKIE_NAME)


def get_session(
    request: Request,
    bearer: Optional[HTTPAuthorizationCredentials] = Security(bearer_scheme),
    db: Session = Depends(get_db),
) -> Optional[SessionData]:
    """Returns None for missing, invalid or expired sessions and for unknown users."""
    token = _read_token(request, bearer)
    if not token:
        return None

    settings = get_settings()
    try:
        payload = jwt.decode(
            token,
            settings.AUTH_SECRET_KEY,
            algorithms=[settings.AUTH_ALGORITHM],
            options={"verify_aud": False},
        )
        user_id = str(payload["sub"])
    except (JWTError, KeyError) as e:
        logger.info("Rejected session token: %s", e)
        return None

    user = db.get(User, user_id)
    if user is None:
        return None
    return SessionData(user=user, active_organization_id=payload.get("org"))


def require_session(session: Optional[SessionData] = Depends(get_session)) -> SessionData:
    if session is None:
        raise AuthenticationRequired()
    return session
