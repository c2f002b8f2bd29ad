"""会话标题自动生成。

首轮对话完成后，以用户第一条消息为种子发起一次非流式请求，
把返回文本原样写入会话标题，并把会话加入 ConversationRegistry。
请求在线程池中执行，不阻塞本轮对话的完成处理。
"""

import logging
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from typing import Any, Dict, Optional

from ollama_chat.config.settings import settings
from ollama_chat.domain.conversation import ConversationSession
from ollama_chat.domain.exceptions import BusinessError
from ollama_chat.engine.registry import ConversationRegistry
from ollama_chat.infrastructure.logging.logger import log_with
from ollama_chat.prompts import load_prompt, render_title_prompt
from ollama_chat.providers.base import GenerateClient


class TitleGenerator:
    def __init__(
        self,
        client: GenerateClient,
        registry: ConversationRegistry,
        cfg=settings,
        executor: Optional[Executor] = None,
        template: Optional[str] = None,
    ):
        self._client = client
        self._registry = registry
        self._settings = cfg
        self._template = template if template is not None else load_prompt("title")
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=getattr(cfg, "title_workers", 2),
            thread_name_prefix="title",
        )

    def schedule(self, session: ConversationSession, seed: str, log_ctx: Optional[Dict[str, Any]] = None) -> Future:
        """提交到线程池执行，调用方无需等待结果。"""
        return self._executor.submit(self.generate, session, seed, log_ctx)

    def generate(
        self,
        session: ConversationSession,
        seed: str,
        log_ctx: Optional[Dict[str, Any]] = None,
    ) -> Optional[str]:
        """同步生成标题，成功返回标题文本，失败返回 None（只记日志）。"""
        ctx = dict(log_ctx or {})
        ctx.setdefault("session_id", session.id)
        model = session.model or self._settings.default_model
        req = self._client.build_request(model, render_title_prompt(seed, self._template), [], stream=False)
        try:
            record = self._client.generate(req, log_ctx=ctx)
        except BusinessError as e:
            self._on_failure(session, ctx, code=e.code, error=e.message)
            return None
        except Exception as e:
            # 后台线程里的异常只会留在 Future 中，这里统一记录并按失败处理
            self._on_failure(session, ctx, code=type(e).__name__, error=str(e), exc_info=True)
            return None

        title = record.response
        applied = session.apply_generated_title(title)
        log_with(logging.INFO, "Generated conversation title", ctx, applied=applied, model=record.model)
        self._registry.record(session)
        return title

    def _on_failure(self, session: ConversationSession, ctx: Dict[str, Any], exc_info: bool = False, **fields) -> None:
        record_anyway = getattr(self._settings, "record_on_title_failure", True)
        log_with(
            logging.WARNING,
            "Title generation failed",
            ctx,
            exc_info=exc_info,
            recorded=record_anyway,
            **fields,
        )
        if record_anyway:
            self._registry.record(session)

    def shutdown(self, wait: bool = True) -> None:
        if self._owns_executor:
            self._executor.shutdown(wait=wait)
