"""对外 API 服务模块。

提供简化的函数接口供上层应用（UI、脚本）调用，返回可直接序列化的字典。
"""

from typing import Optional, Dict, Any

from ollama_chat.config.settings import settings
from ollama_chat.domain.conversation import ConversationSession
from ollama_chat.domain.models import Message
from ollama_chat.engine.chat_engine import ChatEngine
from ollama_chat.infrastructure.logging.logger import logger
from ollama_chat.providers import create_client


_engine: Optional[ChatEngine] = None


def get_default_engine() -> ChatEngine:
    """获取默认的 ChatEngine 实例（单例）。"""
    global _engine
    if _engine is None:
        _engine = ChatEngine(client=create_client(settings), cfg=settings)
    return _engine


def new_conversation(topic: Optional[str] = None, model: Optional[str] = None) -> Dict[str, Any]:
    """创建一个新会话（首轮完成前不会出现在会话列表中）。"""
    session = get_default_engine().new_session(topic=topic, model=model)
    return _session_to_dict(session)


def send_message(text: str, conversation_id: Optional[str] = None) -> Dict[str, Any]:
    """发送一条消息并等待本轮结束。

    Args:
        text: 用户输入内容
        conversation_id: 会话ID（可选，不提供则创建新会话）

    Returns:
        包含会话ID、状态、用户消息、助手消息与统计信息的字典。
        传输失败时 status 为 "failed"，error 给出错误码与信息。

    Raises:
        InvalidInputError / ExchangeInProgressError / ConversationNotFoundError
    """
    engine = get_default_engine()
    try:
        if not conversation_id:
            conversation_id = engine.new_session().id
        result = engine.send_message(conversation_id, text)
    except Exception as e:
        logger.error(f"Chat failed: {e}", extra={"extra": {
            "conversation_id": conversation_id,
            "error": str(e),
        }})
        raise

    record = result.record
    return {
        "conversation_id": result.session_id,
        "status": result.status,
        "user_message": _message_to_dict(result.user_message),
        "assistant_message": _message_to_dict(result.assistant_message),
        "stats": {
            "done_reason": record.done_reason,
            "eval_count": record.eval_count,
            "total_duration": record.total_duration,
        } if record else None,
        "error": {"code": result.error.code, "message": result.error.message} if result.error else None,
    }


def list_conversations() -> list[Dict[str, Any]]:
    """列出会话列表（按首轮完成顺序）。"""
    return [_session_to_dict(s) for s in get_default_engine().list_sessions()]


def get_conversation_messages(conversation_id: str) -> list[Dict[str, Any]]:
    """获取会话的所有消息。"""
    session = get_default_engine().get_session(conversation_id)
    return [_message_to_dict(m) for m in session.messages]


def rename_conversation(conversation_id: str, topic: str) -> Dict[str, Any]:
    """用户重命名会话。"""
    session = get_default_engine().rename(conversation_id, topic)
    return _session_to_dict(session)


def _session_to_dict(session: ConversationSession) -> Dict[str, Any]:
    return {
        "id": session.id,
        "topic": session.topic,
        "model": session.model,
        "state": session.state,
        "created_at": session.created_at.isoformat(),
        "updated_at": session.updated_at.isoformat() if session.updated_at else None,
        "message_count": len(session.messages),
    }


def _message_to_dict(m: Message) -> Dict[str, Any]:
    return {
        "id": m.id,
        "sender": m.sender,
        "text": m.text,
        "context": m.context,
        "created_at": m.created_at.isoformat(),
    }
