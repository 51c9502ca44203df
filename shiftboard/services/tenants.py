"""
Tenant resolution.
A user_code belongs to exactly one User or Company; both are looked up in a single query.
"""
import uuid
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select, literal, union_all
from sqlalchemy.orm import Session

from ..models.models import User, Company
from ..auth.principal import USER, COMPANY


@dataclass(frozen=True)
class Tenant:
    kind: str  # user|company
    id: uuid.UUID
    user_code: str
    name: str
    email: str
    push_token: Optional[str] = None


def resolve_tenant(db: Session, user_code: Optional[str]) -> Optional[Tenant]:
    """
    Resolve a user_code to its owning User or Company.

    Returns:
        Tenant if the code is known, otherwise None
    """
    if not user_code:
        return None

    users = select(
        literal(USER).label("kind"),
        User.id.label("id"),
        User.username.label("name"),
        User.email.label("email"),
        User.push_token.label("push_token"),
    ).where(User.user_code == user_code)
    companies = select(
        literal(COMPANY).label("kind"),
        Company.id.label("id"),
        Company.name.label("name"),
        Company.email.label("email"),
        Company.push_token.label("push_token"),
    ).where(Company.comp_code == user_code)

    row = db.execute(union_all(users, companies).limit(1)).first()
    if row is None:
        return None

    tenant_id = row.id if isinstance(row.id, uuid.UUID) else uuid.UUID(str(row.id))
    return Tenant(
        kind=row.kind,
        id=tenant_id,
        user_code=user_code,
        name=row.name or ("Company" if row.kind == COMPANY else "User"),
        email=row.email,
        push_token=row.push_token,
    )
