"""
Authenticated caller identity passed explicitly into every service call.
"""
import uuid
from dataclasses import dataclass

USER = "user"
COMPANY = "company"
WORKER = "worker"

TENANT_KINDS = (USER, COMPANY)
PRINCIPAL_KINDS = (USER, COMPANY, WORKER)


@dataclass(frozen=True)
class Principal:
    kind: str
    id: uuid.UUID
    user_code: str

    @property
    def is_tenant(self) -> bool:
        return self.kind in TENANT_KINDS

    @property
    def is_worker(self) -> bool:
        return self.kind == WORKER
