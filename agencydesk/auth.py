import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import ExpiredSignatureError, JWTError
from jose import jwt as jose_jwt
from sqlalchemy.orm import Session

from .config import SUPABASE_JWT_AUDIENCE, SUPABASE_JWT_SECRET
from .database import get_db
from .models import User, utc_now

logger = logging.getLogger(__name__)

security = HTTPBearer()

ROLES = ("admin", "client")


@dataclass(frozen=True)
class SessionContext:
    """The acting user, passed explicitly into every service call"""

    user_id: str
    role: str
    client_id: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    @property
    def is_client(self) -> bool:
        return self.role == "client"


def verify_access_token(token: str) -> dict:
    """Verify an identity-provider access token and return its claims"""
    try:
        claims = jose_jwt.decode(
            token,
            SUPABASE_JWT_SECRET,
            algorithms=["HS256"],
            audience=SUPABASE_JWT_AUDIENCE,
        )
    except ExpiredSignatureError as e:
        logger.warning("⚠️ Expired access token presented")
        raise HTTPException(status_code=401, detail="Token expired") from e
    except JWTError as e:
        logger.warning(f"⚠️ Invalid access token: {e}")
        raise HTTPException(status_code=401, detail="Invalid token") from e

    if not claims.get("sub"):
        logger.error("❌ Token missing subject claim")
        raise HTTPException(status_code=401, detail="Invalid token")
    return claims


def context_for_user(user: User) -> SessionContext:
    """Build the session context for a user row"""
    if user.role not in ROLES:
        logger.error(f"❌ User {user.id} has unknown role '{user.role}'")
        raise HTTPException(status_code=403, detail="Account has no dashboard role")
    if user.role == "client" and not user.client_id:
        logger.error(f"❌ Client user {user.id} is not linked to a client record")
        raise HTTPException(status_code=403, detail="Account is not linked to a client")
    return SessionContext(user_id=user.id, role=user.role, client_id=user.client_id)


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db),
) -> User:
    """Resolve the bearer token into the matching dashboard user"""
    claims = verify_access_token(credentials.credentials)
    user = db.query(User).filter(User.id == claims["sub"]).first()
    if not user:
        logger.warning(f"⚠️ No dashboard user for subject {claims['sub']}")
        raise HTTPException(status_code=401, detail="User not found")

    user.last_login = utc_now()
    db.commit()
    return user


async def get_current_context(user: User = Depends(get_current_user)) -> SessionContext:
    return context_for_user(user)


async def require_admin(ctx: SessionContext = Depends(get_current_context)) -> SessionContext:
    if not ctx.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")
    return ctx
