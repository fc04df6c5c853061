"""统一业务异常模型。

所有跨模块抛出的业务级错误都应该继承自 BusinessError，
便于在 API 层统一分类为 HTTP 状态码与对外错误信息。

分类只依赖异常自带的 kind 标签（在抛出点根据上游状态码等信息确定），
不对 message 文本做任何匹配。
"""

from enum import Enum


class ErrorKind(str, Enum):
    """错误语义分类，由 api.errors.classify 映射为 HTTP 状态码。"""

    VALIDATION = "validation"
    AUTH = "auth"
    RATE_LIMIT = "rate_limit"
    UPSTREAM_UNAVAILABLE = "upstream_unavailable"
    INTERNAL = "internal"


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "MODEL_NOT_FOUND"）。
        message: 错误信息；是否原样返回给客户端由 kind 决定。
        http_status: 上游返回的 HTTP 状态码（如有），仅用于日志。
        extra: 其他补充字段（例如 provider、index 等）。
    """

    kind: ErrorKind = ErrorKind.INTERNAL

    def __init__(self, code: str, message: str, http_status: int = 400, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra = extra
        super().__init__(message)


# ---- 请求校验 (400) ----


class ValidationError(BusinessError):
    """参数或请求体校验失败。"""

    kind = ErrorKind.VALIDATION


class ModelNotFoundError(ValidationError):
    """请求的模型未在注册表中配置。"""


class WrongKindError(ValidationError):
    """模型存在，但类型不对（例如用 embedding 模型调用 chat）。"""


class NoValidMessagesError(ValidationError):
    """过滤掉空消息之后没有剩余消息。"""


class MissingInputError(ValidationError):
    """embedding 请求既没有 prompt 也没有 input。"""


class TooManyInputsError(ValidationError):
    pass


class InputTooLongError(ValidationError):
    pass


class CapabilityNotSupportedError(ValidationError):
    """Provider 不支持所请求的能力（如 OpenRouter 的 embedding）。"""


# ---- 可用性 / 认证 (401) ----


class AuthError(BusinessError):
    """上游拒绝认证，或本地缺少凭证。"""

    kind = ErrorKind.AUTH


class ProviderUnavailableError(AuthError):
    """Provider 启动时没有配置凭证，因此不可用。"""


class MissingCredentialsError(AuthError):
    pass


# ---- 上游限流 (429) ----


class RateLimitError(BusinessError):
    """Provider 限流或配额耗尽。"""

    kind = ErrorKind.RATE_LIMIT


# ---- 上游不可用 (503) ----


class UpstreamUnavailableError(BusinessError):
    """上游超时、5xx 或返回了无法解析的数据。"""

    kind = ErrorKind.UPSTREAM_UNAVAILABLE


class NetworkError(UpstreamUnavailableError):
    """网络层错误，例如连接失败、DNS 失败等。"""


class InvalidUpstreamResponseError(UpstreamUnavailableError):
    pass


class InvalidUpstreamEmbeddingError(InvalidUpstreamResponseError):
    """上游返回的向量缺失、为空或不是数值数组。"""


# ---- 其他 (500) ----


class ApiError(BusinessError):
    """第三方 API 返回未归类的非 2xx 错误时抛出。"""


class ResponseShapeError(BusinessError):
    """组装好的响应未通过发送前的结构校验。"""


class InternalError(BusinessError):
    pass
