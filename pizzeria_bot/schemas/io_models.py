"""Pydantic models for the messaging-platform I/O and the agent contract.

Inbound models mirror the WhatsApp Cloud API webhook message object;
outbound models render themselves into Graph API ``messages`` payloads.
"""
from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional, Union

BUTTON_TITLE_MAX = 20
MAX_BUTTONS = 3


class TextBody(BaseModel):
    body: str = ""


class ButtonPayload(BaseModel):
    payload: Optional[str] = None
    text: Optional[str] = None


class Reply(BaseModel):
    id: str
    title: Optional[str] = None
    description: Optional[str] = None


class Interactive(BaseModel):
    type: Optional[str] = None
    button_reply: Optional[Reply] = None
    list_reply: Optional[Reply] = None


class Location(BaseModel):
    latitude: float
    longitude: float
    name: Optional[str] = None
    address: Optional[str] = None


class IncomingMessage(BaseModel):
    id: Optional[str] = None
    from_: str = Field(alias="from")
    type: Optional[str] = None
    text: Optional[TextBody] = None
    button: Optional[ButtonPayload] = None
    interactive: Optional[Interactive] = None
    location: Optional[Location] = None

    model_config = {"populate_by_name": True, "extra": "ignore"}

    @property
    def is_structured(self) -> bool:
        """True for button taps and list picks."""
        return self.interactive is not None or self.button is not None


class Button(BaseModel):
    id: str
    title: str


class ListRow(BaseModel):
    id: str
    title: str
    description: Optional[str] = None


class TextMessage(BaseModel):
    kind: str = "text"
    body: str
    reply_to: Optional[str] = None

    def to_payload(self, to: str) -> Dict[str, Any]:
        payload = {
            "messaging_product": "whatsapp",
            "to": to,
            "type": "text",
            "text": {"body": self.body},
        }
        if self.reply_to:
            payload["context"] = {"message_id": self.reply_to}
        return payload


class ButtonsMessage(BaseModel):
    kind: str = "buttons"
    body: str
    buttons: List[Button]

    def to_payload(self, to: str) -> Dict[str, Any]:
        return {
            "messaging_product": "whatsapp",
            "to": to,
            "type": "interactive",
            "interactive": {
                "type": "button",
                "body": {"text": self.body},
                "action": {
                    "buttons": [
                        {"type": "reply", "reply": {"id": b.id, "title": b.title[:BUTTON_TITLE_MAX]}}
                        for b in self.buttons[:MAX_BUTTONS]
                    ]
                },
            },
        }


class ListMessage(BaseModel):
    kind: str = "list"
    body: str
    button_label: str = "Ver opciones"
    section_title: str = "Menú"
    rows: List[ListRow]

    def to_payload(self, to: str) -> Dict[str, Any]:
        rows = []
        for row in self.rows:
            entry = {"id": row.id, "title": row.title}
            if row.description:
                entry["description"] = row.description
            rows.append(entry)
        return {
            "messaging_product": "whatsapp",
            "to": to,
            "type": "interactive",
            "interactive": {
                "type": "list",
                "body": {"text": self.body},
                "action": {
                    "button": self.button_label[:BUTTON_TITLE_MAX],
                    "sections": [{"title": self.section_title[:24], "rows": rows}],
                },
            },
        }


OutboundMessage = Union[TextMessage, ButtonsMessage, ListMessage]


class SizePrompt(BaseModel):
    item_id: str
    item_name: str
    sizes: List[str]


class AgentResult(BaseModel):
    """What the tool bridge hands back to the router for one turn."""
    replies: List[str] = Field(default_factory=list)
    show_menu: bool = False
    show_category: Optional[str] = None
    show_cart: bool = False
    cart_updated: bool = False
    delivery_updated: bool = False
    size_prompt: Optional[SizePrompt] = None
    session_reset: bool = False
    handled: bool = True
    needs_fallback: bool = False
