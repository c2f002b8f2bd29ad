"""领域层模型与协议。

包含：
- models: Message / GenerateRequest / ResponseRecord 以及事件、结果模型。
- conversation: ConversationSession 会话状态机。
- exceptions: 业务异常类型定义。
"""
