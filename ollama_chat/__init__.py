"""ollama_chat 顶层包。

该包提供本地 Ollama 服务的流式会话引擎，
包括配置加载、领域模型、NDJSON 流解码、会话状态机、
标题自动生成与会话列表等能力。
"""

from ollama_chat.engine import ChatEngine, ConversationRegistry, TitleGenerator

__all__ = ["ChatEngine", "ConversationRegistry", "TitleGenerator"]
