"""会话列表。

只有完成了第一轮对话的会话才会出现在这里，顺序即首轮完成的先后顺序。
"""

import logging
import threading
from typing import Callable, Dict, List, Optional, Tuple

from ollama_chat.domain.conversation import ConversationSession
from ollama_chat.infrastructure.logging.logger import log_with

RegistryListener = Callable[[ConversationSession], None]


class ConversationRegistry:
    def __init__(self):
        self._sessions: List[ConversationSession] = []
        self._index: Dict[str, ConversationSession] = {}
        self._lock = threading.Lock()
        self._listeners: List[RegistryListener] = []

    def record(self, session: ConversationSession) -> bool:
        """追加会话；已记录过的会话直接忽略。返回是否为新追加。"""
        with self._lock:
            if session.id in self._index:
                return False
            self._sessions.append(session)
            self._index[session.id] = session
            listeners = list(self._listeners)
            position = len(self._sessions) - 1
        log_with(logging.INFO, "Recorded conversation", {"session_id": session.id}, position=position)
        for listener in listeners:
            listener(session)
        return True

    def list(self) -> Tuple[ConversationSession, ...]:
        """返回当前顺序的快照，之后的 record 不影响已返回的快照。"""
        with self._lock:
            return tuple(self._sessions)

    def get(self, session_id: str) -> Optional[ConversationSession]:
        with self._lock:
            return self._index.get(session_id)

    def subscribe(self, listener: RegistryListener) -> Callable[[], None]:
        """注册"新会话入列"监听器，返回取消订阅函数。"""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def __contains__(self, session: object) -> bool:
        session_id = session.id if isinstance(session, ConversationSession) else session
        with self._lock:
            return session_id in self._index

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
