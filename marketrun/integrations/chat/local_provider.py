from __future__ import annotations

from datetime import datetime

from marketrun.extensions import db
from marketrun.integrations.chat.base import ChatProvider
from marketrun.integrations.common import IntegrationResult
from marketrun.models import ChatChannel, ChatMessage


class LocalChatProvider(ChatProvider):
    """Stores chat channels and messages in the application database.

    Writes join the caller's session; nothing is committed here.
    """

    name = "local"

    def activate_chat(self, *, order_id: int, activated_by: str) -> IntegrationResult:
        channel = ChatChannel.query.filter_by(order_id=int(order_id)).first()
        if channel is None:
            channel = ChatChannel(order_id=int(order_id))
            db.session.add(channel)
        if channel.is_active:
            return IntegrationResult(ok=True, code="ALREADY_ACTIVE", raw=channel.to_dict())
        channel.is_active = True
        channel.activated_by = (activated_by or "system")[:64]
        channel.activated_at = datetime.utcnow()
        channel.closed_at = None
        db.session.flush()
        return IntegrationResult(ok=True, code="OK", raw=channel.to_dict())

    def save_message(self, *, order_id: int, sender_id: int | None, sender_type: str, body: str) -> IntegrationResult:
        channel = ChatChannel.query.filter_by(order_id=int(order_id), is_active=True).first()
        if channel is None:
            return IntegrationResult(ok=False, code="CHAT_NOT_ACTIVE", message="chat is not active for this order")
        row = ChatMessage(
            order_id=int(order_id),
            sender_id=sender_id,
            sender_type=(sender_type or "system")[:16],
            body=(body or "")[:4000],
        )
        db.session.add(row)
        db.session.flush()
        return IntegrationResult(ok=True, code="OK", raw=row.to_dict())
