from typing import Any, Dict
from fastapi import HTTPException
from lms.errors import ERROR_STATUS, envelope

def fail(r: Dict[str, Any]):
    raise HTTPException(status_code=ERROR_STATUS.get(r.get("code"), 400), detail=r["message"])

def ok(message: str | None = None, **data) -> dict:
    return envelope(True, message, data or None)
