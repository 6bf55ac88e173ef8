import logging
from typing import Any

from autoprint.collaborators.interfaces import MessagingChannel
from autoprint.domain.errors import MessagingError
from autoprint.domain.models import TaskContext

logger = logging.getLogger(__name__)

class NotifyUserHandler:
    """
    notify-user: deliver a prebuilt message. Never touches job state;
    an undelivered message is logged and retried by the queue.
    """

    def __init__(self, messaging: MessagingChannel):
        self.messaging = messaging

    async def __call__(self, ctx: TaskContext) -> dict[str, Any]:
        payer = ctx.payload["payer_identity"]
        text = ctx.payload.get("text", "")
        file = ctx.payload.get("file")

        try:
            if file:
                delivered = await self.messaging.send_file(payer, file, caption=text or None)
            else:
                delivered = await self.messaging.send(payer, text)
        except Exception as e:
            logger.warning(f"Notification to {payer} raised: {e}")
            raise MessagingError(f"Delivery to {payer} failed: {e}") from e

        if not delivered:
            logger.warning(f"Notification to {payer} was not delivered (attempt {ctx.attempt})")
            raise MessagingError(f"Delivery to {payer} failed")

        return {"delivered": True}
