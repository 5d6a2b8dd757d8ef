import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from pymongo.database import Database

from database import create_document, get_db, to_object_id
from schemas import User
from settings import Settings, get_settings

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="auth/login", auto_error=False)

INVALID_CREDENTIALS = "Invalid credentials"


def verify_password(plain_password, hashed_password):
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password):
    return pwd_context.hash(password)


def create_access_token(data: dict, settings: Settings, expires_delta: Optional[timedelta] = None):
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def public_profile(user: dict) -> dict:
    return {
        "id": str(user["_id"]),
        "name": user.get("name"),
        "email": user.get("email"),
        "role": user.get("role", "user"),
    }


def issue_token(user: dict, settings: Settings) -> dict:
    token = create_access_token({"sub": str(user["_id"]), "role": user.get("role", "user")}, settings)
    return {"token": token, "user": public_profile(user)}


def register(db: Database, settings: Settings, name, email, password) -> dict:
    if not name or not email or not password:
        raise HTTPException(status_code=400, detail="Please provide name, email, and password")
    email = email.lower()
    if db["user"].find_one({"email": email}):
        raise HTTPException(status_code=409, detail="User already exists")

    user = User(name=name.strip(), email=email, password_hash=get_password_hash(password))
    user_id = create_document(db, "user", user.model_dump())
    logger.info("Registered user %s", user_id)
    return issue_token(db["user"].find_one({"_id": to_object_id(user_id)}), settings)


def login(db: Database, settings: Settings, email, password) -> dict:
    if not email or not password:
        raise HTTPException(status_code=400, detail="Please provide email and password")
    user = db["user"].find_one({"email": email.lower()})
    # Unknown email and wrong password must be indistinguishable
    if not user or not verify_password(password, user.get("password_hash", "")):
        raise HTTPException(status_code=401, detail=INVALID_CREDENTIALS)
    return issue_token(user, settings)


def create_admin(db: Database, email: str, password: str, name: str = "Admin User") -> dict:
    """Promote an existing user to admin, or create a new admin account."""
    email = email.lower()
    user = db["user"].find_one({"email": email})
    if user:
        db["user"].update_one(
            {"_id": user["_id"]},
            {"$set": {"role": "admin", "updated_at": datetime.now(timezone.utc)}},
        )
        logger.info("Promoted user %s to admin", user["_id"])
    else:
        doc = User(name=name, email=email, password_hash=get_password_hash(password), role="admin")
        create_document(db, "user", doc.model_dump())
        logger.info("Created admin user %s", email)
    return db["user"].find_one({"email": email})


def authenticate(db: Database, settings: Settings, token: Optional[str]) -> dict:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authorized, no token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        user_id: str = payload.get("sub")
        if user_id is None:
            raise credentials_exception
    except JWTError:
        raise credentials_exception

    oid = to_object_id(user_id)
    user = db["user"].find_one({"_id": oid}) if oid else None
    if not user:
        raise credentials_exception
    return user


def get_current_user(
    token: Optional[str] = Depends(oauth2_scheme),
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    return authenticate(db, settings, token)


def require_admin(user=Depends(get_current_user)):
    if user.get("role") != "admin":
        raise HTTPException(status_code=403, detail="Admins only")
    return user
