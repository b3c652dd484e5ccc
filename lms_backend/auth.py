from fastapi import HTTPException, Depends, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt
from passlib.context import CryptContext
from datetime import datetime, timedelta
from typing import Callable, Optional, Dict, Any
from pydantic import BaseModel, Field
from pymongo.errors import DuplicateKeyError

from . import config
from .database import get_db
from .errors import ConflictError
from .models import User, UserRole

# Password hashing
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

# Security
security = HTTPBearer(auto_error=False)

# Models
class Token(BaseModel):
    access_token: str
    token_type: str
    user: Dict[str, Any]

class LoginCredentials(BaseModel):
    email: str
    password: str

class RegisterCredentials(BaseModel):
    email: str
    password: str = Field(..., min_length=6)
    name: str
    role: UserRole = UserRole.STUDENT

# Helper functions
def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against its hash"""
    if not hashed_password:
        return False
    return pwd_context.verify(plain_password, hashed_password)

def get_password_hash(password: str) -> str:
    """Hash a password"""
    return pwd_context.hash(password)

def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create JWT access token"""
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.utcnow() + expires_delta
    else:
        expire = datetime.utcnow() + timedelta(minutes=config.ACCESS_TOKEN_EXPIRE_MINUTES)

    to_encode.update({"exp": expire})
    encoded_jwt = jwt.encode(to_encode, config.JWT_SECRET_KEY, algorithm=config.JWT_ALGORITHM)
    return encoded_jwt

def token_for_user(user: dict) -> str:
    return create_access_token(data={"sub": user["id"], "email": user["email"], "role": user["role"]})

def _credentials_error(detail: str = "Could not validate credentials") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )

def _extract_token(request: Request, credentials: Optional[HTTPAuthorizationCredentials]) -> Optional[str]:
    # Bearer header wins over the cookie
    if credentials and credentials.credentials:
        return credentials.credentials
    return request.cookies.get(config.AUTH_COOKIE_NAME)

def decode_token(token: str) -> Dict[str, Any]:
    """Verify JWT token and return its claims"""
    try:
        payload = jwt.decode(token, config.JWT_SECRET_KEY, algorithms=[config.JWT_ALGORITHM])
    except JWTError:
        raise _credentials_error()
    user_id: str = payload.get("sub")
    if user_id is None:
        raise _credentials_error()
    return {"user_id": user_id, "email": payload.get("email"), "role": payload.get("role")}

async def verify_token(request: Request, credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)) -> Dict[str, Any]:
    token = _extract_token(request, credentials)
    if not token:
        raise _credentials_error("Not authorized to access this route")
    return decode_token(token)

async def get_current_user(db, token_data: dict) -> Dict[str, Any]:
    """Load the user a verified token refers to"""
    user = await db.users.find_one({"id": token_data["user_id"]})
    if user is None:
        raise _credentials_error("User not found")
    if not user.get("is_active", True):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Your account is currently inactive",
        )
    return user

async def get_current_user_dependency(token_data: dict = Depends(verify_token), db=Depends(get_db)) -> Dict[str, Any]:
    return await get_current_user(db, token_data)

async def get_optional_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db=Depends(get_db),
) -> Optional[Dict[str, Any]]:
    """Current user for public endpoints; None when anonymous or the token is bad."""
    token = _extract_token(request, credentials)
    if not token:
        return None
    try:
        return await get_current_user(db, decode_token(token))
    except HTTPException:
        return None

def require_roles(*roles: UserRole) -> Callable:
    """Dependency factory: 403 unless the current user's role is one of ``roles``."""
    allowed = tuple(r.value if isinstance(r, UserRole) else r for r in roles)

    async def wrapper(current_user: dict = Depends(get_current_user_dependency)) -> Dict[str, Any]:
        if current_user.get("role") not in allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"User role {current_user.get('role')} is not authorized to access this route",
            )
        return current_user

    return wrapper

# Account management
async def insert_user(db, user: dict) -> Dict[str, Any]:
    """Insert a user document; the unique email index decides races"""
    try:
        await db.users.insert_one(user)
    except DuplicateKeyError:
        raise ConflictError("Email already registered")
    return user

async def register_user(db, credentials: RegisterCredentials) -> Dict[str, Any]:
    """Create a user with a hashed password; admins are never self-registered"""
    if credentials.role == UserRole.ADMIN:
        credentials.role = UserRole.STUDENT
    existing_user = await db.users.find_one({"email": credentials.email.lower()})
    if existing_user:
        raise ConflictError("Email already registered")

    user_obj = User(
        email=credentials.email.lower(),
        name=credentials.name,
        role=credentials.role,
        password_hash=get_password_hash(credentials.password),
    )
    return await insert_user(db, user_obj.dict())

async def authenticate_user(db, credentials: LoginCredentials) -> Optional[Dict[str, Any]]:
    user = await db.users.find_one({"email": credentials.email.lower()})
    if not user or not verify_password(credentials.password, user.get("password_hash") or ""):
        return None
    return user
