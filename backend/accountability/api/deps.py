"""FastAPI dependencies: current user id from JWT, push dispatcher."""

import uuid
from typing import Annotated

from fastapi import Depends, HTTPException, Request
from jose import JWTError

from accountability.core.auth import decode_token
from accountability.db.session import async_session_maker
from accountability.services.push_notifications import ExpoPushDispatcher, NotificationDispatcher


async def get_current_user_id(request: Request) -> uuid.UUID:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Not authenticated")
    token = auth_header[7:].strip()
    if not token:
        raise HTTPException(status_code=401, detail="Not authenticated")
    try:
        payload = decode_token(token)
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    user_id_str = payload.get("sub")
    if not user_id_str:
        raise HTTPException(status_code=401, detail="Invalid token")
    try:
        return uuid.UUID(str(user_id_str))
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid token")


CurrentUserId = Annotated[uuid.UUID, Depends(get_current_user_id)]


def get_dispatcher() -> NotificationDispatcher:
    return ExpoPushDispatcher(async_session_maker)

