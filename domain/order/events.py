"""
Order domain events.

Emitted by the order state machine after a transition has been written.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional
import uuid


@dataclass
class OrderStatusChanged:
    order_id: str
    from_status: str
    to_status: str
    actor: str
    reason: Optional[str] = None
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
