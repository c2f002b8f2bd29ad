"""会话模型与单轮对话状态机。

ConversationSession 是一个会话的唯一权威状态：消息列表、continuation context、
标题与时间戳。所有修改都经过会话自身的锁，包括来自标题生成线程的写入，
监听器回调在锁外执行。

状态机::

    idle --begin_exchange--> streaming --apply_record(done)--> idle
                                       --fail_exchange------> idle
                                       --cancel_exchange----> idle
"""

import threading
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Callable, List, Optional, Tuple
from uuid import uuid4

from ollama_chat.domain.exceptions import (
    BusinessError,
    ExchangeInProgressError,
    ExchangeStateError,
    InvalidInputError,
)
from ollama_chat.domain.models import Message, ResponseRecord, SessionEvent, SessionState

SessionListener = Callable[[SessionEvent], None]

DEFAULT_TOPIC = "New Chat"


@dataclass
class ExchangeCompletion:
    """一轮对话完成后的结果。

    - first_exchange: 是否需要为该会话触发标题生成。
    - seed: 本轮用户原始输入，作为标题生成的种子文本。
    """

    first_exchange: bool
    seed: str
    assistant_message: Message
    record: ResponseRecord


class ConversationSession:
    def __init__(
        self,
        topic: str = DEFAULT_TOPIC,
        model: Optional[str] = None,
        session_id: Optional[str] = None,
        created_at: Optional[datetime] = None,
    ):
        self.id = session_id or f"c-{uuid4().hex}"
        self.model = model
        self.created_at = created_at or datetime.now(timezone.utc)
        self.updated_at: Optional[datetime] = None
        self._topic = topic
        self._topic_set_by_user = False
        self._messages: List[Message] = []
        self._context: List[int] = []
        self._state: SessionState = "idle"
        self._accumulator = ""
        self._open_index: Optional[int] = None
        self._seed: Optional[str] = None
        self._title_requested = False
        self._lock = threading.RLock()
        self._listeners: List[SessionListener] = []

    def __repr__(self) -> str:
        return f"ConversationSession(id={self.id!r}, topic={self.topic!r}, messages={len(self._messages)})"

    # ---- 只读视图 ----

    @property
    def topic(self) -> str:
        with self._lock:
            return self._topic

    @property
    def context(self) -> List[int]:
        with self._lock:
            return list(self._context)

    @property
    def messages(self) -> Tuple[Message, ...]:
        with self._lock:
            return tuple(self._messages)

    @property
    def state(self) -> SessionState:
        with self._lock:
            return self._state

    @property
    def is_streaming(self) -> bool:
        return self.state == "streaming"

    @property
    def open_message(self) -> Optional[Message]:
        """当前正在接收片段的助手消息，空闲时为 None。"""
        with self._lock:
            if self._open_index is None:
                return None
            return self._messages[self._open_index]

    # ---- 订阅 ----

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        """注册变更监听器，返回取消订阅函数。"""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, event: SessionEvent) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            listener(event)

    # ---- 状态迁移 ----

    def begin_exchange(self, text: str) -> Tuple[Message, Message]:
        """idle -> streaming：追加用户消息与一条空的助手消息。

        Raises:
            InvalidInputError: 去除首尾空白后为空。
            ExchangeInProgressError: 上一轮尚未结束。
        """
        trimmed = (text or "").strip()
        if not trimmed:
            raise InvalidInputError(code="INVALID_INPUT", message="message is empty", session_id=self.id)
        with self._lock:
            if self._state == "streaming":
                raise ExchangeInProgressError(
                    code="EXCHANGE_IN_PROGRESS",
                    message="an exchange is already in flight for this conversation",
                    http_status=409,
                    session_id=self.id,
                )
            user_msg = Message(text=trimmed, sender="user", context=list(self._context))
            assistant_msg = Message(text="", sender="assistant")
            self._messages.append(user_msg)
            self._messages.append(assistant_msg)
            self._open_index = len(self._messages) - 1
            self._accumulator = ""
            self._seed = trimmed
            self._state = "streaming"
        self._emit(SessionEvent(kind="exchange_started", session_id=self.id, message=assistant_msg))
        return user_msg, assistant_msg

    def apply_record(self, record: ResponseRecord) -> Optional[ExchangeCompletion]:
        """把一条解码后的记录应用到会话。

        非完成记录返回 None；完成记录返回 ExchangeCompletion。
        """
        with self._lock:
            if self._state != "streaming" or self._open_index is None:
                raise ExchangeStateError(code="NOT_STREAMING", message="no exchange in flight", session_id=self.id)
            if not record.done:
                self._accumulator += record.response
                updated = replace(self._messages[self._open_index], text=self._accumulator)
                self._messages[self._open_index] = updated
                event = SessionEvent(
                    kind="delta",
                    session_id=self.id,
                    message=updated,
                    delta_text=record.response,
                    record=record,
                )
                completion = None
            else:
                first = not self._context and not self._title_requested
                if first:
                    self._title_requested = True
                finished = self._messages[self._open_index]
                self._accumulator = ""
                self._context = list(record.context or [])
                self.updated_at = datetime.now(timezone.utc)
                self._open_index = None
                self._state = "idle"
                completion = ExchangeCompletion(
                    first_exchange=first,
                    seed=self._seed or "",
                    assistant_message=finished,
                    record=record,
                )
                event = SessionEvent(kind="completed", session_id=self.id, message=finished, record=record)
        self._emit(event)
        return completion

    def fail_exchange(self, error: BusinessError) -> Message:
        """streaming -> idle（失败）：保留部分文本，不更新 context。"""
        return self._close_exchange("failed", error)

    def cancel_exchange(self) -> Message:
        """streaming -> idle（取消）：与失败相同，只是事件类型不同。"""
        return self._close_exchange("cancelled", None)

    def _close_exchange(self, kind, error: Optional[BusinessError]) -> Message:
        with self._lock:
            if self._state != "streaming" or self._open_index is None:
                raise ExchangeStateError(code="NOT_STREAMING", message="no exchange in flight", session_id=self.id)
            partial = self._messages[self._open_index]
            self._accumulator = ""
            self._open_index = None
            self._state = "idle"
        self._emit(SessionEvent(kind=kind, session_id=self.id, message=partial, error=error))
        return partial

    # ---- 标题 ----

    def rename(self, topic: str) -> None:
        """用户重命名，优先级高于自动生成的标题。"""
        with self._lock:
            self._topic = topic
            self._topic_set_by_user = True
        self._emit(SessionEvent(kind="topic_changed", session_id=self.id, topic=topic))

    def apply_generated_title(self, title: str) -> bool:
        """写入自动生成的标题；用户已重命名时忽略并返回 False。"""
        with self._lock:
            if self._topic_set_by_user:
                return False
            self._topic = title
        self._emit(SessionEvent(kind="topic_changed", session_id=self.id, topic=title))
        return True
