from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..db import get_db
from ..models.models import User, Company, Worker
from ..schemas.auth import LoginRequest, TokenResponse
from .principal import USER, COMPANY
from .security import verify_password, create_access_token, principal_for
from ..logging import structlog


router = APIRouter(prefix="/auth", tags=["auth"])
logger = structlog.get_logger(__name__)


def _find_account(db: Session, req: LoginRequest):
    ident = req.identifier.strip()
    if req.account_type == USER:
        return db.query(User).filter((User.username == ident) | (User.email == ident.lower())).first()
    if req.account_type == COMPANY:
        return db.query(Company).filter(Company.email == ident.lower()).first()
    return db.query(Worker).filter(Worker.email == ident.lower()).first()


@router.post("/login", response_model=TokenResponse)
def login(req: LoginRequest, db: Session = Depends(get_db)):
    account = _find_account(db, req)
    if not account or not verify_password(req.password, account.password_hash):
        logger.info("login_failed", account_type=req.account_type)
        raise HTTPException(status_code=401, detail="Invalid credentials")
    if isinstance(account, Worker) and not account.approved:
        raise HTTPException(status_code=403, detail="Your registration is awaiting approval")

    # Remember the device so pushes reach it
    if req.push_token and req.push_token != account.push_token:
        account.push_token = req.push_token
        db.commit()

    principal = principal_for(account)
    logger.info("login_succeeded", kind=principal.kind, account_id=str(principal.id))
    return TokenResponse(
        access_token=create_access_token(principal),
        kind=principal.kind,
        user_code=principal.user_code,
    )
