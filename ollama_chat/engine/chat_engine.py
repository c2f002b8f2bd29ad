"""会话引擎核心模块。

串起一轮对话：构造带 continuation context 的流式请求、逐条应用响应记录、
检测流结束、首轮完成后触发标题生成并把会话加入会话列表。
"""

import logging
import threading
import time
from typing import Dict, Iterator, Optional, Tuple
from uuid import uuid4

from ollama_chat.config.settings import settings
from ollama_chat.domain.conversation import ConversationSession
from ollama_chat.domain.exceptions import (
    BusinessError,
    ConversationNotFoundError,
    NetworkError,
    StreamIncompleteError,
)
from ollama_chat.domain.models import ExchangeResult, Message, SessionEvent
from ollama_chat.engine.registry import ConversationRegistry
from ollama_chat.engine.title_generator import TitleGenerator
from ollama_chat.infrastructure.logging.logger import log_with
from ollama_chat.providers.base import GenerateClient, StreamHandle


class ChatEngine:
    def __init__(
        self,
        client: GenerateClient,
        registry: Optional[ConversationRegistry] = None,
        title_generator: Optional[TitleGenerator] = None,
        cfg=settings,
    ):
        self._client = client
        self._settings = cfg
        self.registry = registry or ConversationRegistry()
        self._titles = title_generator or TitleGenerator(client, self.registry, cfg=cfg)
        self._transient: Dict[str, ConversationSession] = {}
        self._handles: Dict[str, StreamHandle] = {}
        self._lock = threading.Lock()
        self.registry.subscribe(self._forget_transient)

    # ---- 会话管理 ----

    def new_session(self, topic: Optional[str] = None, model: Optional[str] = None) -> ConversationSession:
        """创建一个尚未进入会话列表的临时会话。

        首轮完成前会话只保存在引擎内部；放弃的会话用 discard() 释放。
        """
        session = ConversationSession(
            topic=topic or self._settings.default_topic,
            model=model or self._settings.default_model,
        )
        with self._lock:
            self._transient[session.id] = session
        return session

    def get_session(self, session_id: str) -> ConversationSession:
        session = self.registry.get(session_id)
        if session is not None:
            return session
        with self._lock:
            session = self._transient.get(session_id)
        if session is None:
            raise ConversationNotFoundError(
                code="CONVERSATION_NOT_FOUND",
                message=session_id,
                http_status=404,
            )
        return session

    def discard(self, session_id: str) -> bool:
        """释放一个未进入会话列表的临时会话，进行中的对话会先被取消。

        已在会话列表中的会话不受影响，返回是否确实移除了会话。
        """
        self.cancel(session_id)
        with self._lock:
            return self._transient.pop(session_id, None) is not None

    def _forget_transient(self, session: ConversationSession) -> None:
        with self._lock:
            self._transient.pop(session.id, None)

    def list_sessions(self) -> Tuple[ConversationSession, ...]:
        return self.registry.list()

    def rename(self, session_id: str, topic: str) -> ConversationSession:
        session = self.get_session(session_id)
        session.rename(topic)
        return session

    def cancel(self, session_id: str) -> bool:
        """中止会话当前进行中的对话，可从任意线程调用。

        立即关闭底层连接，阻塞在读流上的对话随即以 cancelled 结束。
        没有进行中的对话时什么也不做，返回 False。
        """
        with self._lock:
            handle = self._handles.get(session_id)
        if handle is None:
            return False
        handle.cancel()
        return True

    def _release(self, session_id: str, handle: StreamHandle) -> None:
        with self._lock:
            if self._handles.get(session_id) is handle:
                del self._handles[session_id]

    def close(self) -> None:
        self._titles.shutdown(wait=False)

    # ---- 对话 ----

    def stream_message(self, session_id: str, text: str) -> Iterator[SessionEvent]:
        """执行一轮流式对话，逐个产出 SessionEvent。

        第一次 next() 时才校验输入并进入 streaming 状态；校验失败时
        （InvalidInputError / ExchangeInProgressError / ConversationNotFoundError）
        不发送请求，会话状态与进行中的对话都不受影响。

        - 传输失败或流在完成记录前结束：产出 "failed" 事件后抛出对应的 BusinessError。
        - cancel() 或提前关闭迭代器：关闭连接，会话进入 cancelled，保留部分文本。
        """
        session = self.get_session(session_id)
        context = session.context
        user_msg, assistant_msg = session.begin_exchange(text)
        handle = StreamHandle()
        with self._lock:
            self._handles[session.id] = handle

        start_time = time.time()
        log_ctx = {"trace_id": f"tr-{uuid4().hex}", "session_id": session.id}
        model = session.model or self._settings.default_model
        req = self._client.build_request(model, user_msg.text, context, stream=True)
        log_with(logging.INFO, "Calling generate", log_ctx, model=model, context_len=len(context))
        records = iter(self._client.generate_stream(req, log_ctx=log_ctx, handle=handle))
        completion = None
        failure: Optional[BusinessError] = None
        cause: Optional[Exception] = None
        try:
            yield SessionEvent(kind="exchange_started", session_id=session.id, message=assistant_msg)
            for record in records:
                if handle.cancelled:
                    break
                completion = session.apply_record(record)
                if completion is not None:
                    break
                yield SessionEvent(
                    kind="delta",
                    session_id=session.id,
                    message=session.open_message,
                    delta_text=record.response,
                    record=record,
                )
            else:
                failure = StreamIncompleteError(
                    code="STREAM_INCOMPLETE",
                    message="stream closed before a completion record",
                )
        except GeneratorExit:
            self._release(session.id, handle)
            _close(records)
            if session.is_streaming:
                session.cancel_exchange()
                log_with(logging.INFO, "Exchange abandoned by caller", log_ctx)
            raise
        except BusinessError as e:
            failure = e
        except Exception as e:
            failure = NetworkError(code="STREAM_ERROR", message=str(e) or type(e).__name__)
            cause = e

        self._release(session.id, handle)
        _close(records)

        # cancel() 关闭连接后读流抛出的异常或提前结束都按取消处理
        if completion is None and handle.cancelled:
            partial = session.cancel_exchange()
            log_with(logging.INFO, "Exchange cancelled", log_ctx, partial_len=len(partial.text))
            yield SessionEvent(kind="cancelled", session_id=session.id, message=partial)
            return

        if failure is not None:
            partial = session.fail_exchange(failure)
            log_with(
                logging.ERROR,
                "Exchange failed",
                log_ctx,
                code=failure.code,
                error=failure.message,
                partial_len=len(partial.text),
            )
            yield SessionEvent(kind="failed", session_id=session.id, message=partial, error=failure)
            if cause is not None:
                raise failure from cause
            raise failure

        if completion.first_exchange:
            self._titles.schedule(session, completion.seed, log_ctx)
        log_with(
            logging.INFO,
            "Completed exchange",
            log_ctx,
            elapsed_seconds=round(time.time() - start_time, 2),
            done_reason=completion.record.done_reason,
            eval_count=completion.record.eval_count,
            first_exchange=completion.first_exchange,
        )
        yield SessionEvent(
            kind="completed",
            session_id=session.id,
            message=completion.assistant_message,
            record=completion.record,
        )

    def send_message(self, session_id: str, text: str) -> ExchangeResult:
        """阻塞执行一轮对话。

        传输失败返回 status="failed" 的结果而不是抛出，便于 UI 展示重试入口；
        输入校验失败等提交前的错误仍然抛出。
        """
        last: Optional[SessionEvent] = None
        try:
            for event in self.stream_message(session_id, text):
                last = event
        except BusinessError as e:
            if last is None or last.kind != "failed":
                raise
            return self._result(session_id, "failed", last.message, error=e)
        return self._result(session_id, last.kind, last.message, record=last.record)

    def _result(self, session_id: str, status, assistant_msg: Message, record=None, error=None) -> ExchangeResult:
        messages = self.get_session(session_id).messages
        idx = next(i for i, m in enumerate(messages) if m.id == assistant_msg.id)
        return ExchangeResult(
            status=status,
            session_id=session_id,
            user_message=messages[idx - 1],
            assistant_message=messages[idx],
            record=record,
            error=error,
        )


def _close(records) -> None:
    close = getattr(records, "close", None)
    if close is not None:
        close()
