import logging
from typing import Optional, Protocol

import httpx

from overlay.core.config import get_settings

logger = logging.getLogger(__name__)


class LivenessCheck(Protocol):
    async def is_session_live(self) -> bool:
        ...


class StaticLivenessCheck:
    def __init__(self, live: bool = True):
        self.live = live

    async def is_session_live(self) -> bool:
        return self.live


class HttpLivenessCheck:
    """Asks the streaming platform's channel endpoint whether the stream is live.

    Expects ``{"data": [{"livestream": {"is_live": ...}}]}`` or a top-level
    ``is_live`` on the first channel. Anything unexpected counts as not live.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        token: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 10.0,
    ):
        settings = get_settings()
        self._url = url if url is not None else settings.liveness_url
        self._token = token if token is not None else settings.liveness_token
        self._transport = transport
        self._timeout = timeout

    async def is_session_live(self) -> bool:
        if not self._url:
            logger.debug("No liveness URL configured, treating session as offline")
            return False

        headers = {"Accept": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"

        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.get(self._url, headers=headers)
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Liveness check failed: %s", exc)
            return False

        channels = payload.get("data") if isinstance(payload, dict) else None
        if not channels or not isinstance(channels[0], dict):
            return False
        channel = channels[0]
        livestream = channel.get("livestream") or {}
        is_live = livestream.get("is_live") if isinstance(livestream, dict) else None
        if is_live is None:
            is_live = channel.get("is_live")
        return bool(is_live)
