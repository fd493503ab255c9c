# app/core/hospital_context.py
from typing import Optional
from uuid import UUID

from fastapi import HTTPException, Request, status

from app.core.config import get_settings


def get_hospital_id(request: Request) -> Optional[UUID]:
    """
    Active hospital for the request, taken from the hospital header.

    - Header absent or blank: no hospital context (global scope).
    - Header present but not a UUID: 400.
    """
    settings = get_settings()
    raw = request.headers.get(settings.hospital_header)
    if raw is None or not raw.strip():
        return None

    try:
        return UUID(raw.strip())
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid {settings.hospital_header} header.",
        )
