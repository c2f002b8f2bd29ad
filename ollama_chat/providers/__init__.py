"""Ollama 生成接口集成层。

该包下的模块负责：
- 定义生成客户端抽象接口 (base)。
- 解码 NDJSON 响应流 (stream)。
- 提供基于 httpx 的具体实现 (ollama_client)。
"""

from ollama_chat.config.settings import settings
from ollama_chat.providers.base import GenerateClient
from ollama_chat.providers.ollama_client import OllamaClient


def create_client(cfg=None) -> GenerateClient:
    """根据配置创建生成客户端实例。"""

    return OllamaClient(cfg or settings)
