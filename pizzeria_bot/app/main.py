#!/usr/bin/env python3
"""
Main FastAPI application for the pizzeria WhatsApp bot.
"""

import json
from typing import Any, Dict, List

from fastapi import BackgroundTasks, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse
from pydantic import ValidationError

from ..agents.order_agent import OrderAgent
from ..data.customer_store import CustomerStore
from ..data.menu_store import get_menu_store
from ..data.order_store import OrderStore
from ..data.populate_db import populate_products
from ..schemas.io_models import IncomingMessage, TextMessage
from ..schemas.order_models import OrderStatusUpdate
from ..utils.logger import get_logger
from ..utils.security import SIGNATURE_HEADER, mask_pii, verify_signature
from . import postprocess as out
from .config import Config
from .controller import Controller
from .messenger import WhatsAppMessenger
from .session import ProcessedMessageLog, SessionManager

logger = get_logger("api")

# Initialize FastAPI app
app = FastAPI(
    title="Pizzeria WhatsApp Bot API",
    description="Conversational ordering agent for WhatsApp",
    version="1.0.0"
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Initialize components
customer_store = CustomerStore()
order_store = OrderStore()
menu_store = get_menu_store()
session_manager = SessionManager(customer_store=customer_store)
processed_log = ProcessedMessageLog(redis_client=session_manager.redis_client if session_manager.use_redis else None)
agent = OrderAgent(session_manager, menu_store, order_store, customer_store)
controller = Controller(session_manager, menu_store, agent, processed_log)
messenger = WhatsAppMessenger()


@app.on_event("startup")
def startup():
    populate_products()
    order_store.expire_stale_orders()


def iter_messages(payload: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Flatten entry[].changes[].value.messages[] from a webhook payload."""
    messages = []
    for entry in payload.get("entry") or []:
        for change in entry.get("changes") or []:
            messages.extend((change.get("value") or {}).get("messages") or [])
    return messages


def process_message(raw: Dict[str, Any]):
    """Run one inbound message through the router and send the replies."""
    try:
        message = IncomingMessage.model_validate(raw)
    except ValidationError as e:
        logger.warning("Ignoring malformed message: %s", e)
        return

    if message.id:
        messenger.send_typing(message.id)
    try:
        replies = controller.handle_incoming(message)
        messenger.send_all(message.from_, replies)
    except Exception:
        logger.exception("Error processing message from %s", mask_pii(message.from_))
        try:
            messenger.send_all(message.from_, [TextMessage(body=out.ERROR_TEXT), out.fallback_buttons()])
        except Exception:
            logger.exception("Could not send the apology to %s", mask_pii(message.from_))


@app.get("/webhook")
async def verify_webhook(
    mode: str = Query(None, alias="hub.mode"),
    token: str = Query(None, alias="hub.verify_token"),
    challenge: str = Query(None, alias="hub.challenge"),
):
    """Meta verification handshake."""
    if mode == "subscribe" and token and token == Config.WHATSAPP_VERIFY_TOKEN:
        logger.info("Webhook verified")
        return PlainTextResponse(challenge or "")
    raise HTTPException(status_code=403, detail="Verification failed")


@app.post("/webhook")
async def receive_webhook(request: Request, background_tasks: BackgroundTasks):
    body = await request.body()
    if Config.WHATSAPP_APP_SECRET and not verify_signature(
        body, request.headers.get(SIGNATURE_HEADER), Config.WHATSAPP_APP_SECRET
    ):
        logger.warning("Rejected webhook with missing or invalid signature")
        raise HTTPException(status_code=401, detail="Invalid signature")

    try:
        payload = json.loads(body or b"{}")
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON")
    if not isinstance(payload, dict) or payload.get("object") != "whatsapp_business_account":
        raise HTTPException(status_code=404, detail="Unsupported object")
    for raw in iter_messages(payload):
        background_tasks.add_task(process_message, raw)
    return {"status": "ok"}


@app.patch("/orders/{order_id}/status")
async def update_order_status(order_id: str, update: OrderStatusUpdate):
    if not order_store.update_order_status(order_id, update.status):
        raise HTTPException(status_code=404, detail="Order not found")
    return {"order_id": order_id, "status": update.status.value}


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
