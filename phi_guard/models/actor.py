"""Actor Models"""

from pydantic import BaseModel, Field, EmailStr
from typing import Optional
from datetime import datetime, timezone
from enum import Enum


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Role(str, Enum):
    """Actor roles"""
    ADMIN = "admin"
    PROVIDER = "provider"
    ASSISTANT = "assistant"


class DataAccessTier(str, Enum):
    """Data access tiers, ordered readonly < limited < full"""
    READONLY = "readonly"
    LIMITED = "limited"
    FULL = "full"

    @property
    def rank(self) -> int:
        return _TIER_RANK[self]

    def covers(self, required: "DataAccessTier") -> bool:
        """True if this tier is at least as permissive as `required`"""
        return self.rank >= required.rank


_TIER_RANK = {
    DataAccessTier.READONLY: 1,
    DataAccessTier.LIMITED: 2,
    DataAccessTier.FULL: 3,
}


class Actor(BaseModel):
    """An authenticated principal"""
    actor_id: str
    email: str
    first_name: str
    last_name: str
    password_hash: str
    role: Role = Role.PROVIDER
    data_access_tier: DataAccessTier = DataAccessTier.LIMITED
    training_completed: bool = False
    training_completed_at: Optional[datetime] = None
    failed_login_attempts: int = 0
    locked_until: Optional[datetime] = None
    credential_changed_at: datetime = Field(default_factory=utcnow)
    is_active: bool = True
    last_login_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)

    def public(self) -> "ActorPublic":
        return ActorPublic(**self.model_dump(exclude={"password_hash"}))


class ActorPublic(BaseModel):
    """Actor as returned to clients (no credential material)"""
    actor_id: str
    email: str
    first_name: str
    last_name: str
    role: Role
    data_access_tier: DataAccessTier
    training_completed: bool
    training_completed_at: Optional[datetime] = None
    failed_login_attempts: int
    locked_until: Optional[datetime] = None
    is_active: bool
    last_login_at: Optional[datetime] = None
    created_at: datetime


class RegisterRequest(BaseModel):
    """Self-registration of a healthcare provider"""
    email: EmailStr
    password: str
    first_name: str = Field(..., min_length=1, max_length=50)
    last_name: str = Field(..., min_length=1, max_length=50)

    class Config:
        json_schema_extra = {
            "example": {
                "email": "dr.jones@clinic.example",
                "password": "Correct-Horse-42!",
                "first_name": "Alex",
                "last_name": "Jones"
            }
        }


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class RefreshRequest(BaseModel):
    refresh_token: str = Field(..., min_length=1)


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(..., min_length=1)
    new_password: str


class TokenResponse(BaseModel):
    """Issued credentials"""
    access_token: str
    refresh_token: Optional[str] = None
    token_type: str = "bearer"
    expires_in: int
    actor: Optional[ActorPublic] = None
    requires_training: bool = False
