"""
Password hashing and JWT helpers.
"""

from datetime import datetime, timedelta, timezone
from typing import NamedTuple, Optional

from jose import JWTError, jwt
from passlib.context import CryptContext

from config import (
    ACCESS_TOKEN_EXPIRE_MINUTES,
    ALGORITHM,
    BCRYPT_ROUNDS,
    PASSWORD_MAX_LENGTH,
    PASSWORD_MIN_LENGTH,
    SECRET_KEY,
)
from errors import InvalidCredentials, ValidationError
from schemas import Role

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=BCRYPT_ROUNDS)


class TokenPayload(NamedTuple):
    subject_id: str
    role: Role


def verify_password_policy(password: str) -> None:
    if not password or len(password) < PASSWORD_MIN_LENGTH:
        raise ValidationError(f"Password must be at least {PASSWORD_MIN_LENGTH} characters long")
    if len(password.encode("utf-8")) > PASSWORD_MAX_LENGTH:
        raise ValidationError(f"Password must be at most {PASSWORD_MAX_LENGTH} bytes long")


def hash_password(password: str) -> str:
    verify_password_policy(password)
    return pwd_context.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    if not password or not hashed:
        return False
    try:
        return pwd_context.verify(password, hashed)
    except ValueError:
        # unrecognised or corrupt hash
        return False


def create_access_token(subject_id: str, role: Role, expires_delta: Optional[timedelta] = None) -> str:
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode = {"sub": str(subject_id), "role": Role(role).value, "exp": expire}
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def decode_access_token(token: str) -> TokenPayload:
    credentials_exception = InvalidCredentials("Could not validate credentials")
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        raise credentials_exception
    subject_id = payload.get("sub")
    role = payload.get("role")
    if subject_id is None or role not in Role._value2member_map_:
        raise credentials_exception
    return TokenPayload(subject_id, Role(role))
