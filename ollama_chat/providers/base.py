"""生成客户端抽象接口。

上层 ChatEngine / TitleGenerator 不直接依赖 httpx，而是依赖此协议：

- build_request: 由 (model, prompt, context, stream) 构造请求，纯函数。
- generate: 非流式调用，返回单条 ResponseRecord（标题生成使用）。
- generate_stream: 流式调用，逐条产出 ResponseRecord。

测试中可以用任意满足协议的假客户端替换 OllamaClient。
"""

import threading
from typing import Callable, Iterable, List, Optional, Protocol, Sequence

from ollama_chat.domain.models import GenerateRequest, ResponseRecord


class StreamHandle:
    """一次流式调用的取消句柄。

    客户端在连接建立后通过 attach 登记关闭函数；cancel 可以在任意线程调用，
    会立即执行已登记的关闭函数，使阻塞在读流上的线程尽快退出。
    cancel 之后才 attach 的关闭函数会被立即执行。
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._closers: List[Callable[[], None]] = []
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        with self._lock:
            return self._cancelled

    def attach(self, closer: Callable[[], None]) -> None:
        with self._lock:
            if not self._cancelled:
                self._closers.append(closer)
                return
        closer()

    def cancel(self) -> None:
        with self._lock:
            if self._cancelled:
                return
            self._cancelled = True
            closers, self._closers = self._closers, []
        for closer in closers:
            closer()


class GenerateClient(Protocol):
    name: str

    def build_request(self, model: str, prompt: str, context: Sequence[int], stream: bool) -> GenerateRequest:
        ...

    def generate(self, req: GenerateRequest, log_ctx: Optional[dict] = None) -> ResponseRecord:
        ...

    def generate_stream(
        self,
        req: GenerateRequest,
        log_ctx: Optional[dict] = None,
        handle: Optional[StreamHandle] = None,
    ) -> Iterable[ResponseRecord]:
        """执行一次流式调用，逐步产出记录；handle 用于从其他线程关闭连接。"""

        ...
