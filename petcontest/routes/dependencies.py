from typing import Optional

from fastapi import Header, Request

from petcontest.database import Database


async def get_database():
    """Database dependency"""
    return Database.get_db()


async def get_current_user_id(
    x_user_id: Optional[str] = Header(None, alias="X-User-Id")
) -> Optional[str]:
    """
    Caller id as forwarded by the API gateway.

    Authentication happens upstream; a missing header means anonymous.
    """
    if x_user_id is None:
        return None
    x_user_id = x_user_id.strip()
    return x_user_id or None


def get_client_ip(request: Request) -> Optional[str]:
    """First hop of X-Forwarded-For, else the socket peer"""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None
