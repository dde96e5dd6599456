from datetime import datetime, timedelta, timezone
from typing import Optional
from jose import JWTError, jwt
from fastapi import HTTPException, status
from fastapi.security import HTTPBearer
from pydantic import BaseModel, ValidationError
from enum import Enum

from .config import settings

# Bearer tokens are issued by the platform auth service; we only verify them
security = HTTPBearer()

ACCESS_TOKEN_TYPE = "access"

class UserRole(str, Enum):
    ADMIN = "admin"
    DOCTOR = "doctor"
    PATIENT = "patient"

class TokenPayload(BaseModel):
    sub: Optional[int] = None
    role: Optional[UserRole] = None
    profile_id: Optional[int] = None  # patient or doctor record id
    exp: Optional[int] = None
    token_type: Optional[str] = None

class Actor(BaseModel):
    """The caller of a scheduling operation and the capacity it acts in.

    ``profile_id`` is the patient id for patients and the doctor id for
    doctors; admins act on any record and may leave it unset.
    """
    role: UserRole
    user_id: int
    profile_id: Optional[int] = None

    model_config = {"frozen": True}

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    def owns_patient_record(self, patient_id: int) -> bool:
        return self.role == UserRole.PATIENT and self.profile_id == patient_id

    def owns_doctor_record(self, doctor_id: int) -> bool:
        return self.role == UserRole.DOCTOR and self.profile_id == doctor_id

def create_actor_token(actor: Actor, expires_delta: Optional[timedelta] = None) -> str:
    """Sign an access token that resolves back to ``actor``.

    Used by tooling and tests; production tokens come from the auth service
    with the same claims.
    """
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    claims = {
        "sub": str(actor.user_id),  # python-jose requires a string subject
        "role": actor.role.value,
        "profile_id": actor.profile_id,
        "exp": expire,
        "token_type": ACCESS_TOKEN_TYPE,
    }
    return jwt.encode(claims, settings.SECRET_KEY, algorithm=settings.ALGORITHM)

def decode_token(token: str) -> Optional[TokenPayload]:
    """Verify the signature and expiry; None if the token is unusable."""
    try:
        claims = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        return TokenPayload(**claims)
    except (JWTError, ValidationError):
        return None

def actor_from_token(token_payload: TokenPayload) -> Optional[Actor]:
    if token_payload.sub is None or token_payload.role is None:
        return None
    if token_payload.role != UserRole.ADMIN and token_payload.profile_id is None:
        return None
    return Actor(role=token_payload.role, user_id=token_payload.sub, profile_id=token_payload.profile_id)

class AuthenticationError(HTTPException):
    def __init__(self, detail: str = "Could not validate credentials"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            headers={"WWW-Authenticate": "Bearer"},
        )

class AuthorizationError(HTTPException):
    def __init__(self, detail: str = "Not enough permissions"):
        super().__init__(status_code=status.HTTP_403_FORBIDDEN, detail=detail)
