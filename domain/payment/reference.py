"""
网关交易参考号：`{orderId}_{nonce}`

回调只携带该参考号，需据此反查所属订单。nonce 为创建时刻的毫秒时间戳。
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

SEPARATOR = "_"


def build_gateway_ref(order_id: str, at: Optional[datetime] = None) -> str:
    moment = at or datetime.now(timezone.utc)
    return f"{order_id}{SEPARATOR}{int(moment.timestamp() * 1000)}"


def parse_order_id(gateway_ref: Optional[str]) -> Optional[str]:
    """从参考号解析订单ID；格式不符时返回 None"""
    if not gateway_ref or SEPARATOR not in gateway_ref:
        return None
    order_id, nonce = gateway_ref.rsplit(SEPARATOR, 1)
    if not order_id or not (nonce.isascii() and nonce.isdigit()):
        return None
    return order_id


def created_at_from_ref(gateway_ref: Optional[str]) -> Optional[datetime]:
    """参考号中 nonce 对应的创建时刻（UTC）"""
    if parse_order_id(gateway_ref) is None:
        return None
    millis = int(gateway_ref.rsplit(SEPARATOR, 1)[1])  # type: ignore[union-attr]
    return datetime.fromtimestamp(millis / 1000, tz=timezone.utc)
