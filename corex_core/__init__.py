"""Corex Core 顶层包。

该包提供 IDE 助手的请求编排引擎：聊天流式输出与取消、
上下文文件选择、多步骤计划执行，以及统一的消息协议、
错误记录、性能计时与 Provider 适配。
"""

from corex_core.engine.core import CoreEngine
from corex_core.engine.runtime import CoreRuntime
from corex_core.protocol import Message

__all__ = ["CoreEngine", "CoreRuntime", "Message"]
