"""
请求/响应日志中间件
记录HTTP请求与响应耗时；网关回调的签名参数在日志中脱敏
"""
import json
import time
from typing import Any, Mapping
from urllib.parse import parse_qsl

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from core.logging_config import get_logger
from core.config import settings


logger = get_logger(__name__)

REDACTED = "***"


def sanitize(data: Any, sensitive: frozenset) -> Any:
    """递归替换敏感字段（键名大小写不敏感）"""
    if isinstance(data, Mapping):
        return {k: (REDACTED if str(k).lower() in sensitive else sanitize(v, sensitive)) for k, v in data.items()}
    if isinstance(data, (list, tuple)):
        return [sanitize(v, sensitive) for v in data]
    return data


class LoggingMiddleware(BaseHTTPMiddleware):
    """
    日志记录中间件

    - 请求开始/结束各记录一条，携带耗时与状态码
    - 4xx 记为 warning，5xx 记为 error
    - IPN/return 回调以 query string 传参，query 同样脱敏
    """

    SKIP_PATHS = {"/health", "/docs", "/redoc", "/openapi.json"}

    SENSITIVE_FIELDS = frozenset({"vnp_securehash", "hash_secret", "secret", "token", "api_key", "phone", "email"})

    def __init__(self, app: ASGIApp):
        super().__init__(app)
        self.enable_body_log_default: bool = settings.LOG_REQUEST_BODY_ENABLE_BY_DEFAULT
        self.max_body_log_bytes: int = settings.LOG_REQUEST_BODY_MAX_BYTES

    async def dispatch(self, request: Request, call_next):
        if request.url.path in self.SKIP_PATHS:
            return await call_next(request)

        start_time = time.perf_counter()
        request_info = await self._request_info(request)
        logger.info("request_started", **request_info)

        try:
            response = await call_next(request)
        except Exception as exc:
            logger.error(
                "request_failed",
                duration=time.perf_counter() - start_time,
                error=str(exc),
                error_type=type(exc).__name__,
                **request_info,
                exc_info=True,
            )
            # 交给全局异常处理器
            raise

        duration = time.perf_counter() - start_time
        self._log_response(response, duration, request_info)
        response.headers["X-Process-Time"] = f"{duration:.3f}"
        return response

    async def _request_info(self, request: Request) -> dict:
        info: dict[str, Any] = {
            "method": request.method,
            "path": request.url.path,
            "query_params": sanitize(dict(request.query_params), self.SENSITIVE_FIELDS),
        }
        if request.path_params:
            info["path_params"] = request.path_params

        if request.method in ("POST", "PUT", "PATCH") and self._should_log_body(request):
            body = await self._body_snippet(request)
            if body is not None:
                info["body"] = body

        user_agent = request.headers.get("User-Agent")
        if user_agent:
            info["user_agent"] = user_agent
        return info

    def _should_log_body(self, request: Request) -> bool:
        # X-Log-Body: true/false 可按请求覆盖默认值
        header = (request.headers.get("X-Log-Body") or "").lower()
        if header in {"true", "1", "yes"}:
            return True
        if header in {"false", "0", "no"}:
            return False
        return bool(self.enable_body_log_default and settings.DEBUG)

    async def _body_snippet(self, request: Request) -> Any:
        body = await request.body()
        if not body:
            return None

        text = body[: self.max_body_log_bytes].decode("utf-8", errors="ignore")
        content_type = request.headers.get("content-type", "").lower()
        if "application/json" in content_type:
            try:
                return sanitize(json.loads(text), self.SENSITIVE_FIELDS)
            except ValueError:
                # 截断后的 JSON 无法解析，按文本记录
                return text
        if "application/x-www-form-urlencoded" in content_type:
            return sanitize(dict(parse_qsl(text)), self.SENSITIVE_FIELDS)
        # 其它类型不记录正文
        return None

    def _log_response(self, response: Response, duration: float, request_info: dict) -> None:
        status_code = response.status_code
        log_data = {"status_code": status_code, "duration": duration, **request_info}
        if status_code < 400:
            logger.info("request_completed", **log_data)
        elif status_code < 500:
            logger.warning("request_client_error", **log_data)
        else:
            logger.error("request_server_error", **log_data)
