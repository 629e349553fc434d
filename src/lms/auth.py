import hashlib
import logging
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from lms.actions.common import _err
from lms.api.common import fail
from lms.deps import get_session
from lms.models import User

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)

def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()

async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    session: AsyncSession = Depends(get_session),
) -> User:
    if credentials is None or not credentials.credentials:
        fail(_err("Access token required", code="UNAUTHENTICATED"))
    r = await session.execute(select(User).where(User.token_hash == hash_token(credentials.credentials)))
    user = r.scalar_one_or_none()
    if not user:
        logger.warning("Rejected unknown bearer token")
        fail(_err("Invalid token", code="UNAUTHENTICATED"))
    return user

async def require_librarian(user: User = Depends(get_current_user)) -> User:
    if not user.is_librarian:
        fail(_err("Librarian access required", code="LIBRARIAN_ONLY"))
    return user
