"""User models for authentication and database storage."""

from pydantic import BaseModel, EmailStr, Field, field_validator
from typing import Optional
from datetime import datetime


class UserCreate(BaseModel):
    """Schema for user registration."""
    name: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=7)

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("User name is required")
        return v

    @field_validator("email")
    @classmethod
    def lowercase_email(cls, v: str) -> str:
        return v.lower()


class UserLogin(BaseModel):
    """Schema for user login."""
    email: str
    password: str


class UserUpdate(BaseModel):
    """Schema for profile updates (all fields optional)."""
    name: Optional[str] = Field(default=None, min_length=1)
    email: Optional[EmailStr] = None
    password: Optional[str] = Field(default=None, min_length=7)

    model_config = {"extra": "forbid"}

    @field_validator("email")
    @classmethod
    def lowercase_email(cls, v: Optional[str]) -> Optional[str]:
        return v.lower() if v else v


class EmailVerification(BaseModel):
    """Pending verification code (stored as a digest) and its expiry."""
    code: str
    expiry: datetime


class EmailInfo(BaseModel):
    """Email address with its verification state."""
    address: str
    verified: bool = False
    verification: Optional[EmailVerification] = None


class TokenEntry(BaseModel):
    """A bearer token the user currently holds."""
    token: str
    expiry: Optional[datetime] = None


class UserInDB(BaseModel):
    """Schema for user stored in database."""
    id: str
    name: str
    password_hash: str
    email: EmailInfo
    tokens: list[TokenEntry] = Field(default_factory=list)
    created_at: datetime
    updated_at: Optional[datetime] = None

    @classmethod
    def from_document(cls, doc: dict) -> "UserInDB":
        """Build a user from a raw MongoDB document."""
        return cls(
            id=str(doc["_id"]),
            name=doc["name"],
            password_hash=doc["password_hash"],
            email=doc["email"],
            tokens=doc.get("tokens") or [],
            created_at=doc["created_at"],
            updated_at=doc.get("updated_at"),
        )

    def to_response(self) -> "UserResponse":
        return UserResponse(
            id=self.id,
            name=self.name,
            email=self.email.address,
            email_verified=self.email.verified,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )


class UserResponse(BaseModel):
    """Schema for user response (without sensitive data)."""
    id: str
    name: str
    email: str
    email_verified: bool
    created_at: datetime
    updated_at: Optional[datetime] = None


class EmailVerificationRequest(BaseModel):
    """Schema for confirming an email address."""
    user_id: str
    code: str = Field(..., min_length=1)


class Token(BaseModel):
    """Schema for login response."""
    auth_token: str
    token_type: str = "bearer"


class TokenData(BaseModel):
    """Schema for decoded token claims."""
    sub: str
    email: Optional[str] = None
    iat: Optional[int] = None
    exp: int
    aud: Optional[str] = None
    iss: Optional[str] = None
    jti: Optional[str] = None

    @property
    def user_id(self) -> str:
        return self.sub
