from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from shared.rbac import ROLES


_ALLOWED_ROLES = set(ROLES)

OtpPurpose = Literal["login", "enable_2fa", "disable_2fa"]


class Register(BaseModel):
    email: str
    password: str = Field(min_length=8)
    roles: List[str] = Field(default_factory=lambda: ["user"])

    @field_validator("roles")
    @classmethod
    def _normalize_roles(cls, v: List[str]) -> List[str]:
        normalized = []
        for r in v:
            rr = r.strip().lower()
            if rr not in _ALLOWED_ROLES:
                raise ValueError(
                    f"Invalid role: {r}. Allowed: {sorted(_ALLOWED_ROLES)}"
                )
            if rr not in normalized:
                normalized.append(rr)

        return normalized or ["user"]


class Login(BaseModel):
    email: str
    password: str


class SendOtpRequest(BaseModel):
    email: str
    purpose: OtpPurpose


class VerifyOtpRequest(BaseModel):
    email: str
    code: str
    purpose: OtpPurpose
    # from POST /login, required when purpose is login
    challenge_token: Optional[str] = None


class AuditLogRequest(BaseModel):
    action: Optional[str] = None
    resource_type: Optional[str] = None
    resource_id: Optional[str] = None
    details: Optional[Dict[str, Any]] = None
