"""
Bearer-token authentication: issuing JWTs at register/login and resolving
the current user for every protected route.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from pydantic import BaseModel
from pymongo.database import Database

from config import ACCESS_TOKEN_EXPIRE_MINUTES, ALGORITHM, SECRET_KEY
from database import create_document, get_db
from errors import AuthError, Conflict, ValidationError
from schemas import LoginBody, RegisterBody, User as UserSchema
from users import get_user_by_id, get_user_by_username, hash_password, user_to_public, verify_password

logger = logging.getLogger(__name__)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")


class TokenData(BaseModel):
    user_id: Optional[str] = None


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    encoded_jwt = jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)
    return encoded_jwt


def decode_access_token(token: str) -> TokenData:
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError as e:
        logger.warning("Rejected token: %s", e)
        raise AuthError("Token is not valid")
    user_id = payload.get("sub")
    if user_id is None:
        raise AuthError("Token is not valid")
    return TokenData(user_id=user_id)


def get_current_user(token: str = Depends(oauth2_scheme), db: Database = Depends(get_db)) -> dict:
    token_data = decode_access_token(token)
    # malformed ids resolve to None and fail closed here
    user = get_user_by_id(db, token_data.user_id)
    if user is None:
        raise AuthError("Could not validate credentials")
    return user


def _token_response(user: dict) -> dict:
    token = create_access_token({"sub": str(user["_id"])})
    return {"token": token, "user": user_to_public(user)}


def register(db: Database, body: RegisterBody) -> dict:
    if get_user_by_username(db, body.username):
        raise Conflict("Username taken")
    email = str(body.email).strip().lower() if body.email else None
    if email and db["user"].find_one({"email": email}):
        raise Conflict("Email already registered")

    user_doc = UserSchema(
        username=body.username,
        password=hash_password(body.password),
        email=email,
    ).model_dump()
    inserted_id = create_document(db, "user", user_doc)
    logger.info("Registered user %s (%s)", body.username, inserted_id)
    return _token_response(get_user_by_id(db, inserted_id))


def login(db: Database, body: LoginBody) -> dict:
    user = get_user_by_username(db, body.username)
    if not user or not verify_password(body.password, user.get("password", "")):
        raise ValidationError("Invalid credentials")
    return _token_response(user)
