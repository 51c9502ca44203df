import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from passlib.context import CryptContext
from sqlalchemy.orm import Session

from ..config import settings
from ..db import get_db
from ..models.models import User, Company, Worker
from .principal import Principal, PRINCIPAL_KINDS, USER, COMPANY, WORKER


pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
http_bearer = HTTPBearer(auto_error=False)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain: str, hashed: str) -> bool:
    try:
        return pwd_context.verify(plain, hashed)
    except (ValueError, TypeError):
        return False


def _create_token(sub: str, ttl_seconds: int, extra: Optional[dict] = None) -> str:
    now = datetime.now(tz=timezone.utc)
    payload = {
        "sub": sub,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(seconds=ttl_seconds)).timestamp()),
        "jti": str(uuid.uuid4()),
    }
    if extra:
        payload.update(extra)
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def create_access_token(principal: Principal) -> str:
    return _create_token(
        str(principal.id),
        settings.jwt_ttl_seconds,
        extra={"kind": principal.kind, "user_code": principal.user_code},
    )


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")


def principal_for(account) -> Principal:
    """Build the principal for a freshly authenticated account row."""
    if isinstance(account, Worker):
        return Principal(kind=WORKER, id=account.id, user_code=account.user_code)
    if isinstance(account, Company):
        return Principal(kind=COMPANY, id=account.id, user_code=account.comp_code)
    return Principal(kind=USER, id=account.id, user_code=account.user_code)


def get_current_principal(
    creds: Optional[HTTPAuthorizationCredentials] = Depends(http_bearer),
    db: Session = Depends(get_db),
) -> Principal:
    if creds is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    payload = decode_token(creds.credentials)
    kind = payload.get("kind")
    if kind not in PRINCIPAL_KINDS:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token kind")
    try:
        subject = uuid.UUID(str(payload.get("sub")))
    except ValueError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid subject")

    # Re-read the account so deleted or unapproved workers lose access immediately
    model = {USER: User, COMPANY: Company, WORKER: Worker}[kind]
    account = db.query(model).filter(model.id == subject).first()
    if account is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Account not found")
    if kind == WORKER and not account.approved:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Worker not approved")
    return principal_for(account)


def require_tenant(principal: Principal = Depends(get_current_principal)) -> Principal:
    if not principal.is_tenant:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")
    return principal


def require_worker(principal: Principal = Depends(get_current_principal)) -> Principal:
    if not principal.is_worker:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")
    return principal
