from typing import Literal, Optional

from pydantic import BaseModel


class LoginRequest(BaseModel):
    identifier: str  # username, company email or worker email
    password: str
    account_type: Literal["user", "company", "worker"]
    push_token: Optional[str] = None


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    kind: str
    user_code: str
