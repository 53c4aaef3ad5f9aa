from fastapi import Header, HTTPException, status

from rcn_api.core.settings import settings


async def require_internal_api_key(x_api_key: str = Header("", alias="X-API-Key")) -> None:
    if not settings.internal_api_key:
        return

    if x_api_key != settings.internal_api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
        )


async def require_shop_id(shop_id: str | None = Header(None, alias="X-Shop-Id")) -> str:
    """Resolve the acting shop forwarded by the shop dashboard backend."""

    if not shop_id or not shop_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing shop context",
        )
    return shop_id.strip()
