from marketrun.models.user import User
from marketrun.models.agent_settings import AgentSettings
from marketrun.models.agent_location import AgentLocation
from marketrun.models.market import Market
from marketrun.models.shopping_list import ShoppingList
from marketrun.models.order import Order
from marketrun.models.order_rejection import OrderRejection
from marketrun.models.order_trail import OrderTrail
from marketrun.models.payment_transaction import PaymentTransaction
from marketrun.models.webhook_event import WebhookEvent
from marketrun.models.chat import ChatChannel, ChatMessage
from marketrun.models.job_run import JobRun

__all__ = [
    "User",
    "AgentSettings",
    "AgentLocation",
    "Market",
    "ShoppingList",
    "Order",
    "OrderRejection",
    "OrderTrail",
    "PaymentTransaction",
    "WebhookEvent",
    "ChatChannel",
    "ChatMessage",
    "JobRun",
]
