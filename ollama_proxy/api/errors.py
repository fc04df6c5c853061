"""错误分类。

把任意异常映射为 (HTTP 状态码, 对外错误信息)。分类只看异常的 ErrorKind，
不匹配 message 文本；限流、上游不可用与未知错误使用固定文案，不向客户端泄露上游细节。
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

from ollama_proxy.domain.exceptions import BusinessError, ErrorKind
from ollama_proxy.infrastructure.logging.logger import logger


RATE_LIMIT_MESSAGE = "Rate limit exceeded. Please try again later."
UNAVAILABLE_MESSAGE = "Service temporarily unavailable. Please try again later."
INTERNAL_MESSAGE = "Internal server error"

_STATUS_BY_KIND = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.AUTH: 401,
    ErrorKind.RATE_LIMIT: 429,
    ErrorKind.UPSTREAM_UNAVAILABLE: 503,
    ErrorKind.INTERNAL: 500,
}


@dataclass(frozen=True)
class ClassifiedError:
    status: int
    message: str

    def to_body(self) -> Dict[str, str]:
        return {"error": self.message}


def classify(exc: BaseException) -> ClassifiedError:
    """按异常语义分类，不记录日志。"""

    if not isinstance(exc, BusinessError):
        return ClassifiedError(500, INTERNAL_MESSAGE)
    status = _STATUS_BY_KIND.get(exc.kind, 500)
    if exc.kind in (ErrorKind.VALIDATION, ErrorKind.AUTH):
        return ClassifiedError(status, exc.message)
    if exc.kind == ErrorKind.RATE_LIMIT:
        return ClassifiedError(status, RATE_LIMIT_MESSAGE)
    if exc.kind == ErrorKind.UPSTREAM_UNAVAILABLE:
        return ClassifiedError(status, UNAVAILABLE_MESSAGE)
    return ClassifiedError(status, INTERNAL_MESSAGE)


def classify_and_log(exc: BaseException, context: str, fields: Optional[Dict[str, Any]] = None) -> ClassifiedError:
    """分类并记录完整错误信息（对外信息可能已脱敏，日志里保留原文）。"""

    classified = classify(exc)
    detail: Dict[str, Any] = {"status": classified.status, "error": str(exc)}
    if isinstance(exc, BusinessError):
        detail.update({"code": exc.code, "kind": exc.kind.value, **exc.extra})
    if fields:
        detail.update(fields)
    if isinstance(exc, BusinessError) and exc.kind == ErrorKind.VALIDATION:
        logger.warning(f"{context}: {exc}", extra={"extra": detail})
    elif isinstance(exc, BusinessError):
        logger.error(f"{context}: {exc}", extra={"extra": detail})
    else:
        logger.error(f"{context}: {exc!r}", exc_info=exc, extra={"extra": detail})
    return classified
