"""Session-aware dependencies for storefront member APIs."""

from fastapi import Header, HTTPException, status


async def require_member_session(session_user: str | None = Header(None, alias="X-Session-User")) -> str:
    """Return the buyer id forwarded by the storefront's auth layer."""

    buyer_id = (session_user or "").strip()
    if not buyer_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing session user context",
        )
    return buyer_id
