from .request_id import RequestIDMiddleware, resolve_client_ip
from .logging import LoggingMiddleware

__all__ = [
    "RequestIDMiddleware",
    "LoggingMiddleware",
    "resolve_client_ip",
]
