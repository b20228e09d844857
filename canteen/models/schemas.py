"""
Data models / type definitions shared across modules.
Plain dataclasses, no ORM.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Optional

ROLES = ("student", "staff", "admin")

ORDER_STATUSES = ("pending", "preparing", "ready", "completed", "cancelled")

NOTIFICATION_TYPES = ("order", "wallet", "system", "promotion")


@dataclass
class Account:
    id: int
    name: str
    role: str
    student_id: str
    wallet_balance: Decimal = Decimal("0")
    email: Optional[str] = None
    pin_hash: Optional[str] = None
    qr_code: Optional[str] = None
    last_login: Optional[datetime] = None
    created_at: Optional[datetime] = None


@dataclass
class OrderLine:
    name: str
    price: Decimal
    quantity: int


@dataclass
class Order:
    id: int
    account_id: int
    items: list[OrderLine]
    total_amount: Decimal
    token_number: int
    status: str = "pending"
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class StatusChange:
    order_id: int
    from_status: Optional[str]
    to_status: str
    changed_by: Optional[int] = None
    created_at: Optional[datetime] = None


@dataclass
class Notification:
    id: int
    account_id: int
    type: str
    title: str
    message: str
    data: dict = field(default_factory=dict)
    read: bool = False
    read_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
