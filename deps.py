from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from jose import jwt, JWTError
from tortoise.exceptions import DoesNotExist
import uuid

from models import User
from notifications import Notifier
from services.config import SECRET_KEY, ALGORITHM
from storage import Storage

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="login/access-token")

async def get_current_user(token: str = Depends(oauth2_scheme)) -> User:
    cred_exc = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
    )
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        user_id = uuid.UUID(payload.get("sub"))
    except (JWTError, ValueError, TypeError):
        raise cred_exc
    try:
        user = await User.get(id=user_id)
    except DoesNotExist:
        raise cred_exc
    return user

async def get_current_active_user(user: User = Depends(get_current_user)) -> User:
    if user.disabled:
        raise HTTPException(status_code=400, detail="Inactive user")
    return user

async def get_current_admin_user(user: User = Depends(get_current_active_user)) -> User:
    if not user.is_admin:
        raise HTTPException(status_code=403, detail="Not enough permissions")
    return user

# ---------- billing collaborators ----------
def get_storage(request: Request) -> Storage:
    return request.app.state.storage

def get_notifier(request: Request, user: User = Depends(get_current_active_user)) -> Notifier:
    # one handle per request, tagged with the acting user
    return Notifier(request.app.state.events, actor=user.id)
