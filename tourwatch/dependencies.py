import secrets

from fastapi import Header, HTTPException

from tourwatch.config import settings


async def get_owner_id(x_user_id: str | None = Header(default=None)) -> str:
    """Owner identity as forwarded by the front-end (bot or web app)."""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    return x_user_id.strip()


async def require_ops_token(x_ops_token: str | None = Header(default=None)) -> None:
    if not settings.ops_token:
        raise HTTPException(status_code=403, detail="Manual ticks are disabled")
    if not x_ops_token or not secrets.compare_digest(x_ops_token, settings.ops_token):
        raise HTTPException(status_code=403, detail="Invalid ops token")
