"""Request-scoped dependencies: database session and caller identity.

Authentication lives outside this service; the gateway in front of it
forwards the resolved tenant as ``X-Client-Id`` and the operator as
``X-User-Email``.
"""

from collections.abc import Generator

from fastapi import Header, HTTPException, status
from sqlalchemy.orm import Session

from dataport.db.session import get_db
from dataport.storage.blob_store import BlobStore, get_blob_store


def get_session() -> Generator[Session, None, None]:
    """FastAPI dependency that yields a managed SQLAlchemy session."""
    yield from get_db()


def get_client_id(x_client_id: str | None = Header(default=None)) -> int:
    """Resolve the calling tenant or reject the request."""
    if not x_client_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing client context",
        )
    try:
        return int(x_client_id)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid client id",
        ) from exc


def get_operator_email(x_user_email: str | None = Header(default=None)) -> str | None:
    return x_user_email or None


def get_store() -> BlobStore:
    """Blob store for upload bytes; overridden in tests."""
    return get_blob_store()
