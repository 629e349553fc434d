import math
import uuid
from typing import Optional, Dict, Any
from sqlalchemy.ext.asyncio import AsyncSession

def _ok(msg: str, **data):    return {"ok": True,  "message": msg, **({"data": data} if data else {})}
def _err(msg: str, code="", **data): return {"ok": False, "message": msg, "code": code, **({"data": data} if data else {})}

async def _abort(session: AsyncSession) -> None:
    """Roll back, then reload the instances the rollback expired."""
    kept = list(session.identity_map.values())
    await session.rollback()
    for obj in kept:
        if obj in session:
            await session.refresh(obj)

def parse_id(value: Optional[str]) -> Optional[str]:
    """Canonical form of a UUID id, or None when it is malformed."""
    if not value:
        return None
    try:
        return str(uuid.UUID(str(value)))
    except ValueError:
        return None

def pagination(page: int, limit: int, total: int) -> Dict[str, Any]:
    total_pages = math.ceil(total / limit) if limit else 0
    return {
        "current_page": page,
        "total_pages": total_pages,
        "total_items": total,
        "has_next_page": page < total_pages,
        "has_prev_page": page > 1,
    }
