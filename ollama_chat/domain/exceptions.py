"""统一业务异常模型。

所有跨模块抛出的业务级错误都应该继承自 BusinessError，
便于在 API 层或 UI 层做统一捕获与用户提示。
"""


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "NETWORK_ERROR"）。
        message: 用户可读错误信息。
        http_status: 映射到 HTTP 时可用的状态码，默认 400。
        extra: 其他补充字段（例如 trace_id、session_id 等）。
    """

    def __init__(self, code: str, message: str, http_status: int = 400, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra = extra
        super().__init__(message)


class NetworkError(BusinessError):
    """网络层错误，例如连接失败、超时、读流中断等。"""


class StreamIncompleteError(NetworkError):
    """响应流在收到 done=true 之前就被关闭。"""


class ApiError(BusinessError):
    """Ollama 返回非 2xx 状态码时抛出。"""


class MalformedRecordError(BusinessError):
    """单行响应无法解析为 JSON 或不符合 ResponseRecord 结构。"""


class ValidationError(BusinessError):
    """参数或配置校验失败。"""


class InvalidInputError(ValidationError):
    """用户输入为空或仅包含空白字符。"""


class ExchangeInProgressError(BusinessError):
    """会话已有一轮对话在进行中，拒绝新的提交。"""


class ExchangeStateError(BusinessError):
    """在错误的会话状态下推进状态机（调用方编程错误）。"""


class ConversationNotFoundError(BusinessError):
    """按 id 找不到会话。"""
