"""统一业务异常模型。

所有跨模块抛出的业务级错误都应该继承自 BusinessError，
便于在 Router（CoreEngine）层做统一捕获并转换为 error 消息。

RequestCancelledError 比较特殊：它表示调用方主动取消，
不属于失败，各组件遇到它时只做 info 级别追踪，不发送错误事件。
"""


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "PROVIDER_ERROR"）。
        message: 用户可读错误信息。
        http_status: 映射到 HTTP 时可用的状态码，默认 400。
        extra: 其他补充字段（例如 request_id、provider 等）。
    """

    def __init__(self, code: str, message: str, http_status: int = 400, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra = extra
        super().__init__(message)


class NetworkError(BusinessError):
    """网络层错误，例如连接失败、超时等。"""


class ApiError(BusinessError):
    """补全服务返回非 2xx/429 错误时抛出。"""


class RateLimitError(BusinessError):
    """Provider 限流错误，由 retry 包装器负责重试/退避。"""


class ValidationError(BusinessError):
    """参数或配置校验失败。"""


class ProviderError(BusinessError):
    """Provider 返回了无法使用的结果（例如空 choices）。"""


class IndexUnavailableError(BusinessError):
    """项目索引无法读取。"""


class RequestCancelledError(BusinessError):
    """请求已被取消（协作式取消在挂起点被观察到）。"""

    def __init__(self, message: str = "Request cancelled", **extra):
        super().__init__(code="CANCELLED", message=message, http_status=499, **extra)
