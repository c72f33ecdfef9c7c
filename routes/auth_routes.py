import os
from datetime import datetime, timedelta, timezone

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import jwt
from jose.exceptions import JWTError

# ─── JWT settings ───────────────────────────────────────────────────────────────
SECRET_KEY       = os.getenv("SECRET_KEY", "changeme")
ALGORITHM        = os.getenv("ALGORITHM", "HS256")
ACCESS_TOKEN_MIN = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "60"))

bearer_scheme = HTTPBearer()

# Токены выдаёт внешний сервис авторизации; здесь только проверяем подпись и берём sub.


def create_jwt(player_id: str) -> str:
    expire  = datetime.now(timezone.utc) + timedelta(minutes=ACCESS_TOKEN_MIN)
    payload = {"sub": player_id, "exp": expire}
    return jwt.encode(payload, SECRET_KEY, algorithm=ALGORITHM)

def decode_player_id(token: str) -> str:
    """
    Returns the player id (``sub``) of a valid token, raises 401 otherwise.
    """
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid token")
    player_id = payload.get("sub")
    if not player_id:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid token")
    return player_id


# ─── Dependencies ───────────────────────────────────────────────────────────────
async def get_current_player_id(
    creds: HTTPAuthorizationCredentials = Depends(bearer_scheme),
) -> str:
    return decode_player_id(creds.credentials)
