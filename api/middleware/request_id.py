"""
Request ID 中间件
生成或透传追踪ID，解析客户端IP，并绑定到structlog上下文

客户端IP会作为 vnp_IpAddr 发送给支付网关，因此只有来自受信代理的
X-Forwarded-For / X-Real-IP 才会被采纳。
"""
import ipaddress
import uuid
from typing import Iterable, Optional

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

import structlog

from core.config import settings


FALLBACK_CLIENT_IP = "127.0.0.1"


def _valid_ip(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    try:
        return str(ipaddress.ip_address(value.strip()))
    except ValueError:
        return None


def resolve_client_ip(
    peer: Optional[str],
    forwarded_for: Optional[str],
    real_ip: Optional[str],
    trusted_proxies: Iterable[str],
) -> str:
    """
    解析客户端真实IP

    直连对端不在受信代理列表中时忽略转发头；无法解析时回退为 127.0.0.1，
    保证网关请求中的 IP 字段始终合法。
    """
    peer_ip = _valid_ip(peer)
    if peer_ip and peer_ip in set(trusted_proxies):
        # 取第一个IP（原始客户端IP）
        forwarded = _valid_ip(forwarded_for.split(",")[0]) if forwarded_for else None
        candidate = forwarded or _valid_ip(real_ip)
        if candidate:
            return candidate
    return peer_ip or FALLBACK_CLIENT_IP


class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    Request ID 追踪中间件

    功能：
    1. 从请求头获取或生成新的request_id
    2. 解析客户端IP并写入 request.state
    3. 将上下文绑定到structlog，并在响应头中返回request_id
    """

    HEADER_NAME = "X-Request-ID"

    def __init__(self, app: ASGIApp, trusted_proxies: Optional[Iterable[str]] = None):
        super().__init__(app)
        self.trusted_proxies = tuple(settings.TRUSTED_PROXIES if trusted_proxies is None else trusted_proxies)

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get(self.HEADER_NAME) or str(uuid.uuid4())
        client_ip = resolve_client_ip(
            request.client.host if request.client else None,
            request.headers.get("X-Forwarded-For"),
            request.headers.get("X-Real-IP"),
            self.trusted_proxies,
        )

        request.state.request_id = request_id
        request.state.client_ip = client_ip

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            client_ip=client_ip,
            method=request.method,
            path=request.url.path,
        )

        response = await call_next(request)
        response.headers[self.HEADER_NAME] = request_id
        return response
