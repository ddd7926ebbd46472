"""WhatsApp Cloud API client for outbound messages."""
from typing import Iterable

import requests

from ..schemas.io_models import OutboundMessage
from ..utils.logger import get_logger
from ..utils.security import mask_pii
from .config import Config

logger = get_logger("whatsapp")

SEND_TIMEOUT = 15


class WhatsAppMessenger:
    def __init__(self, access_token: str = None, phone_id: str = None, api_version: str = None):
        self.access_token = access_token or Config.WHATSAPP_ACCESS_TOKEN
        self.phone_id = phone_id or Config.WHATSAPP_PHONE_ID
        self.api_version = api_version or Config.WHATSAPP_API_VERSION

    @property
    def messages_url(self) -> str:
        return f"https://graph.facebook.com/{self.api_version}/{self.phone_id}/messages"

    def _headers(self):
        return {"Authorization": f"Bearer {self.access_token}", "Content-Type": "application/json"}

    def _post(self, payload):
        resp = requests.post(self.messages_url, headers=self._headers(), json=payload, timeout=SEND_TIMEOUT)
        if resp.status_code >= 400:
            logger.error("WhatsApp send failed %s: %s", resp.status_code, resp.text[:300])
        resp.raise_for_status()
        return resp.json()

    def send(self, to: str, message: OutboundMessage):
        logger.debug("Sending %s to %s", message.kind, mask_pii(to))
        return self._post(message.to_payload(to))

    def send_all(self, to: str, messages: Iterable[OutboundMessage]):
        for message in messages:
            self.send(to, message)

    def mark_as_read(self, message_id: str, typing: bool = False):
        """Best-effort read receipt, optionally with the typing indicator."""
        payload = {"messaging_product": "whatsapp", "status": "read", "message_id": message_id}
        if typing:
            payload["typing_indicator"] = {"type": "text"}
        try:
            self._post(payload)
        except requests.RequestException as e:
            logger.warning("Could not mark %s as read: %s", message_id, e)

    def send_typing(self, message_id: str):
        self.mark_as_read(message_id, typing=True)
