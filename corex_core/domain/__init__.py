"""领域层模型与异常。

包含：
- models: ChatMessage / ProjectIndex / ContextFile / Plan 等数据模型。
- cancellation: 协作式取消令牌 CancellationToken。
- exceptions: 业务异常类型定义（含 RequestCancelledError）。
"""
