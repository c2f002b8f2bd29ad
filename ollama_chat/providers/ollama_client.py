"""Ollama /api/generate 适配器。

- URL: {ollama_base_url}{generate_path}，默认 http://localhost:11434/api/generate
- 请求体只包含 model/prompt/context/stream，无认证。
- stream=true 时响应为 NDJSON，stream=false 时为单个 JSON 对象。
"""

import logging
from typing import Iterator, Optional, Sequence

import httpx

from ollama_chat.config.settings import settings
from ollama_chat.domain.exceptions import ApiError, NetworkError
from ollama_chat.domain.models import GenerateRequest, ResponseRecord
from ollama_chat.infrastructure.logging.logger import log_with
from ollama_chat.providers.base import StreamHandle
from ollama_chat.providers.stream import StreamDecoder, decode_record

JSON_HEADERS = {"Content-Type": "application/json", "Accept": "application/json"}


def build_generate_request(
    model: str,
    prompt: str,
    context: Sequence[int],
    stream: bool,
    path: str = "/api/generate",
) -> GenerateRequest:
    """构造 /api/generate 请求，不访问网络，不修改入参。

    Raises:
        TypeError: 入参无法表示为请求体（编程错误）。
    """
    if not isinstance(model, str) or not isinstance(prompt, str):
        raise TypeError("model and prompt must be str")
    ctx = list(context or [])
    if any(isinstance(t, bool) or not isinstance(t, int) for t in ctx):
        raise TypeError("context must be a sequence of int tokens")
    payload = {
        "model": model,
        "prompt": prompt,
        "context": ctx,
        "stream": bool(stream),
    }
    return GenerateRequest(path=path, payload=payload, headers=dict(JSON_HEADERS))


class OllamaClient:
    """Ollama 客户端实现。"""

    name = "ollama"

    def __init__(self, cfg=settings):
        self._settings = cfg

    @property
    def base_url(self) -> str:
        return getattr(self._settings, "ollama_base_url", "http://localhost:11434").rstrip("/")

    @property
    def generate_path(self) -> str:
        return getattr(self._settings, "generate_path", "/api/generate")

    def build_request(self, model: str, prompt: str, context: Sequence[int], stream: bool) -> GenerateRequest:
        return build_generate_request(model, prompt, context, stream, path=self.generate_path)

    def _timeout(self) -> httpx.Timeout:
        return httpx.Timeout(
            self._settings.http_timeout,
            connect=getattr(self._settings, "connect_timeout", 5.0),
        )

    # ---- 非流式 ----

    def generate(self, req: GenerateRequest, log_ctx: Optional[dict] = None) -> ResponseRecord:
        """执行一次非流式调用并解码完整响应体。

        Raises:
            NetworkError / ApiError / MalformedRecordError
        """
        try:
            with httpx.Client(timeout=self._timeout(), trust_env=False) as client:
                resp = client.post(
                    f"{self.base_url}{req.path}",
                    json=req.payload,
                    headers=req.headers,
                )
        except httpx.RequestError as e:
            raise NetworkError(code="NETWORK_ERROR", message=str(e))
        if resp.status_code >= 400:
            raise ApiError(code="API_ERROR", message=resp.text, http_status=resp.status_code)
        log_with(logging.DEBUG, "Received generate response", log_ctx or {}, status=resp.status_code)
        return decode_record(resp.text)

    # ---- 流式 ----

    def generate_stream(
        self,
        req: GenerateRequest,
        log_ctx: Optional[dict] = None,
        handle: Optional[StreamHandle] = None,
    ) -> Iterator[ResponseRecord]:
        """执行一次流式调用，逐条产出 ResponseRecord。

        调用方关闭生成器（或读到 done=true）时，底层连接随上下文管理器一起关闭。
        传入 handle 时，handle.cancel() 可从其他线程直接关闭响应。
        流在 done=true 之前结束时只是正常停止迭代，是否完成由调用方判断。
        """
        ctx = dict(log_ctx or {})
        try:
            with httpx.Client(timeout=self._timeout(), trust_env=False) as client:
                with client.stream(
                    "POST",
                    f"{self.base_url}{req.path}",
                    json=req.payload,
                    headers=req.headers,
                ) as resp:
                    if resp.status_code >= 400:
                        resp.read()
                        raise ApiError(code="API_ERROR", message=resp.text, http_status=resp.status_code)
                    if handle is not None:
                        handle.attach(resp.close)
                    decoder = StreamDecoder(resp.iter_lines(), log_ctx=ctx)
                    for record in decoder:
                        yield record
                    log_with(
                        logging.DEBUG,
                        "Stream finished",
                        ctx,
                        completed=decoder.completed,
                        skipped=decoder.skipped,
                    )
        except httpx.RequestError as e:
            raise NetworkError(code="NETWORK_ERROR", message=str(e) or type(e).__name__)
