import base64
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBasic, HTTPBasicCredentials
from passlib.context import CryptContext

from .models import User

# -----------------------------
# Password hashing helpers
# -----------------------------

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

def hash_password(password: str) -> str:
    """Return a secure bcrypt hash of *password*."""
    return pwd_context.hash(password)

def verify_password(password: str, hashed: str) -> bool:
    """Verify *password* against *hashed* bcrypt digest."""
    return pwd_context.verify(password, hashed)

# -----------------------------
# Credential checks
# -----------------------------

async def authenticate_user(username: str, password: str) -> Optional[User]:
    user: Optional[User] = await User.filter(username=username).first()
    if not user or not verify_password(password, user.password_hash):
        return None
    return user

async def authenticate(credentials: HTTPBasicCredentials) -> Optional[int]:
    """Return the id of the user matching *credentials*, or ``None``."""
    user = await authenticate_user(credentials.username, credentials.password)
    return user.id if user else None

def decode_basic_token(token: str) -> Optional[HTTPBasicCredentials]:
    """Decode a base64 ``username:password`` token as sent by websocket clients."""
    try:
        decoded = base64.b64decode(token).decode()
        username, password = decoded.split(":", 1)
    except (ValueError, UnicodeDecodeError):
        return None
    return HTTPBasicCredentials(username=username, password=password)

# -----------------------------
# FastAPI dependency helpers
# -----------------------------

security = HTTPBasic()

async def get_current_user(credentials: HTTPBasicCredentials = Depends(security)) -> User:
    """Validate HTTP Basic credentials and return the matching *User* instance.

    Raises
    ------
    HTTPException
        If the credentials are invalid.
    """
    user = await authenticate_user(credentials.username, credentials.password)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials",
            headers={"WWW-Authenticate": "Basic"},
        )
    return user

__all__ = [
    "pwd_context",
    "hash_password",
    "verify_password",
    "authenticate_user",
    "authenticate",
    "decode_basic_token",
    "security",
    "get_current_user",
]
