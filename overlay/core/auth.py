from typing import Optional

from fastapi import Header, HTTPException, Request, status

from overlay.core.config import get_settings


def _unauthorized() -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


async def require_api_secret(request: Request) -> None:
    """Require the shared API secret as a bearer token or ``?secret=``.

    The check is off while ``API_SECRET`` is empty.
    """
    secret = get_settings().api_secret
    if not secret:
        return
    if request.headers.get("Authorization") == f"Bearer {secret}":
        return
    if request.query_params.get("secret") == secret:
        return
    raise _unauthorized()


async def require_cron_secret(authorization: Optional[str] = Header(default=None, alias="Authorization")) -> None:
    secret = get_settings().cron_secret
    if secret and authorization != f"Bearer {secret}":
        raise _unauthorized()
