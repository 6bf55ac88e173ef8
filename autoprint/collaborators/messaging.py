import logging
import re
from pathlib import Path
from typing import Any, Optional

import httpx

logger = logging.getLogger(__name__)

def format_phone_number(payer_identity: str) -> str:
    """Digits only; identities that already carry a chat suffix pass through."""
    if "@" in payer_identity:
        return payer_identity
    return re.sub(r"\D", "", payer_identity)

class HttpMessagingChannel:
    """
    Delivers messages through an HTTP messaging gateway.

    Failures are logged and reported as False, never raised: callers decide
    whether a lost message matters.
    """

    def __init__(
        self,
        base_url: str,
        api_token: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        headers = {"Authorization": f"Bearer {api_token}"} if api_token else {}
        self.client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            headers=headers,
            transport=transport
        )

    async def _post(self, path: str, **kwargs: Any) -> bool:
        try:
            resp = await self.client.post(path, **kwargs)
            resp.raise_for_status()
            return True
        except httpx.HTTPStatusError as e:
            logger.warning(f"Messaging gateway rejected {path}: status={e.response.status_code}")
            return False
        except httpx.HTTPError as e:
            logger.error(f"Messaging gateway unreachable for {path}: {e}")
            return False

    async def send(self, payer_identity: str, text: str) -> bool:
        ok = await self._post("/messages", json={"to": format_phone_number(payer_identity), "text": text})
        if ok:
            logger.info(f"Message sent to {payer_identity}")
        return ok

    async def send_file(self, payer_identity: str, location: str, caption: Optional[str] = None) -> bool:
        path = Path(location)
        try:
            content = path.read_bytes()
        except OSError as e:
            logger.error(f"Cannot read {location} for sending: {e}")
            return False
        ok = await self._post(
            "/media",
            data={"to": format_phone_number(payer_identity), "caption": caption or ""},
            files={"file": (path.name, content)}
        )
        if ok:
            logger.info(f"File sent to {payer_identity}")
        return ok

    async def close(self) -> None:
        await self.client.aclose()

class LoggingMessagingChannel:
    """Stand-in channel for running without a gateway: messages go to the log."""

    async def send(self, payer_identity: str, text: str) -> bool:
        logger.info(f"[message to {payer_identity}] {text}")
        return True

    async def send_file(self, payer_identity: str, location: str, caption: Optional[str] = None) -> bool:
        logger.info(f"[file to {payer_identity}] {location} {caption or ''}".rstrip())
        return True
