"""会话引擎层。

- chat_engine: 单轮对话的编排（请求构造、流式解码、状态推进、取消）。
- title_generator: 首轮完成后的标题生成。
- registry: 已完成首轮对话的会话列表。
"""

from ollama_chat.engine.chat_engine import ChatEngine
from ollama_chat.engine.registry import ConversationRegistry
from ollama_chat.engine.title_generator import TitleGenerator

__all__ = ["ChatEngine", "ConversationRegistry", "TitleGenerator"]
