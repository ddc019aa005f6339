"""Bearer-session dependencies that pin every request to its caller's user."""

import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.user import User
from services.session_token import decode_session_token

logger = logging.getLogger(__name__)

auth_scheme = HTTPBearer(auto_error=False)


@dataclass
class AuthContext:
    user_id: str
    email: Optional[str] = None


def ensure_user_scope(auth_user_id: str, supplied_user_id: Optional[str]) -> str:
    """Return the authenticated user_id; a different supplied user_id is a 403."""
    if supplied_user_id and supplied_user_id != auth_user_id:
        logger.warning(f"Rejected cross-user request: session {auth_user_id} asked for {supplied_user_id}")
        raise HTTPException(status_code=403, detail="user_id does not match authenticated session.")
    return auth_user_id


async def get_auth_context(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(auth_scheme),
) -> AuthContext:
    """Resolve the caller from its Bearer session token."""
    if not credentials or credentials.scheme.lower() != "bearer":
        raise HTTPException(status_code=401, detail="Missing Bearer session token.")

    try:
        payload = decode_session_token(credentials.credentials)
    except ValueError as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc

    return AuthContext(
        user_id=str(payload["sub"]).strip(),
        email=str(payload.get("email", "")) or None,
    )


async def ensure_user(db: AsyncSession, user_id: str, email: Optional[str] = None) -> User:
    """Load the owning user row, creating it on first use."""
    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if user:
        return user

    user = User(id=user_id, email=email or f"{user_id}@local.invalid")
    db.add(user)
    await db.commit()
    return user
