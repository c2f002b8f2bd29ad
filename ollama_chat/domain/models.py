"""统一的消息、请求与响应数据模型。

本模块定义了会话引擎内部共享的标准数据结构：

- Message: 会话中的一条消息（user/assistant）。
- GenerateRequest: 发往 Ollama /api/generate 的完整请求。
- ResponseRecord: 从响应流中解析出的一行记录。
- SessionEvent / ExchangeResult: 对外的变更通知与一轮对话的结果。

Provider 适配层只依赖这些模型，负责在 Ollama 的 JSON 与这些模型之间做转换。
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional, TYPE_CHECKING
from uuid import uuid4

if TYPE_CHECKING:
    from ollama_chat.domain.exceptions import BusinessError


Sender = Literal["user", "assistant"]

SessionState = Literal["idle", "streaming"]

EventKind = Literal["exchange_started", "delta", "completed", "failed", "cancelled", "topic_changed"]

ExchangeStatus = Literal["completed", "failed", "cancelled"]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Message:
    """会话中的一条消息。

    - text: 流式生成期间通过 dataclasses.replace 生成同 id 的新对象来更新，
      对象本身不可变。
    - context: 创建时会话 continuation context 的快照，仅供展示/调试。
    """

    text: str
    sender: Sender
    context: Optional[List[int]] = None
    id: str = field(default_factory=lambda: f"m-{uuid4().hex}")
    created_at: datetime = field(default_factory=_utcnow)

    @property
    def is_user(self) -> bool:
        return self.sender == "user"


@dataclass
class GenerateRequest:
    """一次 /api/generate 调用。

    payload 只包含 model/prompt/context/stream 四个字段，
    headers 声明 JSON 内容类型。
    """

    path: str
    payload: Dict[str, Any]
    headers: Dict[str, str]

    @property
    def stream(self) -> bool:
        return bool(self.payload.get("stream"))


@dataclass
class ResponseRecord:
    """响应流中的一行（stream=false 时为完整响应体）。

    计时/计数字段原样透传，不参与流程控制。
    """

    model: str
    created_at: str
    response: str
    done: bool
    done_reason: Optional[str] = None
    context: Optional[List[int]] = None
    total_duration: Optional[int] = None
    load_duration: Optional[int] = None
    prompt_eval_count: Optional[int] = None
    prompt_eval_duration: Optional[int] = None
    eval_count: Optional[int] = None
    eval_duration: Optional[int] = None
    raw: Optional[dict] = field(default=None, repr=False, compare=False)


@dataclass
class SessionEvent:
    """会话变更通知，供 UI 等外部协作者订阅。

    kind:
        - "exchange_started": 用户消息与空的助手消息已追加。
        - "delta": 助手消息收到新片段，message 为替换后的消息。
        - "completed": 本轮结束，record 为 done=true 的记录。
        - "failed" / "cancelled": 本轮失败或被取消，message 保留已收到的部分文本。
        - "topic_changed": 标题被自动生成或被用户重命名。
    """

    kind: EventKind
    session_id: str
    message: Optional[Message] = None
    delta_text: Optional[str] = None
    record: Optional[ResponseRecord] = None
    error: Optional["BusinessError"] = None
    topic: Optional[str] = None


@dataclass
class ExchangeResult:
    """一次阻塞式对话的结果。

    status 区分"成功但回复为空"与"传输失败"，后者 error 非空。
    """

    status: ExchangeStatus
    session_id: str
    user_message: Message
    assistant_message: Message
    record: Optional[ResponseRecord] = None
    error: Optional["BusinessError"] = None

    @property
    def ok(self) -> bool:
        return self.status == "completed"
