from .base import BaseRepository
from .bill_repository import BillRepository
from .order_repository import OrderRepository
from .quote_repository import QuoteRepository
from .service_request_repository import ServiceRequestRepository
from .status_event_repository import StatusEventRepository
from .user_repository import UserRepository

__all__ = [
    "BaseRepository",
    "BillRepository",
    "OrderRepository",
    "QuoteRepository",
    "ServiceRequestRepository",
    "StatusEventRepository",
    "UserRepository",
]
