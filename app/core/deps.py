"""FastAPI dependencies for tenant resolution and database access."""

from typing import Generator
from uuid import UUID

from fastapi import Depends, Header, HTTPException
from sqlalchemy.orm import Session

from app.core.config import settings
from app.db.session import SessionLocal

# Header carrying the tenant. Session/auth handling lives outside this service
# and forwards the authenticated clinic here.
CLINIC_HEADER = "X-Clinic-Id"


def get_db() -> Generator[Session, None, None]:
    """
    Database session dependency.

    Yields a database session and ensures it's closed after the request.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_clinic_id(
    x_clinic_id: str | None = Header(default=None, alias=CLINIC_HEADER),
    db: Session = Depends(get_db),
) -> UUID:
    """
    Resolve the calling clinic.

    Raises:
        HTTPException 401: header missing or malformed
        HTTPException 403: clinic does not exist
    """
    from app.db.models import Clinic

    if not x_clinic_id:
        raise HTTPException(status_code=401, detail="Unauthorized")
    try:
        clinic_id = UUID(x_clinic_id)
    except ValueError:
        raise HTTPException(status_code=401, detail="Unauthorized")

    exists = db.query(Clinic.id).filter(Clinic.id == clinic_id).first()
    if not exists:
        raise HTTPException(status_code=403, detail="Forbidden")
    return clinic_id


def verify_internal_secret(x_internal_secret: str = Header(...)) -> None:
    """Verify the internal secret header used by cron callers."""
    expected = settings.INTERNAL_SECRET
    if not expected:
        raise HTTPException(status_code=501, detail="INTERNAL_SECRET not configured")
    if x_internal_secret != expected:
        raise HTTPException(status_code=403, detail="Invalid internal secret")
