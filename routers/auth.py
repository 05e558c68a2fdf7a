from fastapi import APIRouter, Depends, HTTPException
from fastapi.security import OAuth2PasswordRequestForm
from passlib.context import CryptContext
from jose import jwt, JWTError
from datetime import datetime, timedelta, timezone
import uuid

from models import User
from schemas import Token, UserRead
from deps import get_current_active_user
from services.config import (
    SECRET_KEY, REFRESH_SECRET, ALGORITHM, ACCESS_EXPIRE_SECONDS, REFRESH_EXPIRE_SECONDS,
)

router = APIRouter(tags=["auth"])
pwd_ctx = CryptContext(schemes=["bcrypt"], deprecated="auto")

def create_token(data: dict, secret: str, expires: int) -> str:
    to_encode = data.copy()
    to_encode["exp"] = datetime.now(tz=timezone.utc) + timedelta(seconds=expires)
    return jwt.encode(to_encode, secret, algorithm=ALGORITHM)

def _issue(user: User) -> dict:
    data = {"sub": str(user.id), "is_admin": user.is_admin}
    return {
        "access_token": create_token(data, SECRET_KEY, ACCESS_EXPIRE_SECONDS),
        "refresh_token": create_token(data, REFRESH_SECRET, REFRESH_EXPIRE_SECONDS),
        "token_type": "bearer",
    }

@router.post("/login/access-token", response_model=Token)
async def login(form: OAuth2PasswordRequestForm = Depends()):
    user = await User.get_or_none(username=form.username)
    if not user or not pwd_ctx.verify(form.password, user.hashed_password):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    if user.disabled:
        raise HTTPException(status_code=400, detail="Inactive user")
    return _issue(user)

@router.post("/login/refresh-token", response_model=Token)
async def refresh_token(payload: Token):
    try:
        decoded = jwt.decode(payload.refresh_token, REFRESH_SECRET, algorithms=[ALGORITHM])
        sub = decoded.get("sub")
        if not sub:
            raise HTTPException(status_code=401, detail="Invalid refresh token")
        user_id = uuid.UUID(sub)
    except (JWTError, ValueError):
        raise HTTPException(status_code=401, detail="Invalid refresh token")
    user = await User.get_or_none(id=user_id)
    if not user:
        raise HTTPException(status_code=401, detail="User not found")
    return _issue(user)

@router.get("/users/me", response_model=UserRead)
async def read_me(current_user: User = Depends(get_current_active_user)):
    return UserRead.model_validate(current_user)
