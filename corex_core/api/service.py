"""对外 API 服务模块。

提供简化的函数接口供上层应用（例如宿主进程的消息桥）调用。
引擎本身不持有模块级状态，这里的单例只是为了方便。
"""

from typing import Any, Dict, List, Optional

from corex_core.config.settings import settings
from corex_core.engine.core import CoreEngine
from corex_core.engine.runtime import CoreRuntime
from corex_core.infrastructure.logging.logger import logger
from corex_core.protocol import Message
from corex_core.providers import LocalProjectIndex, create_provider


_engine: Optional[CoreEngine] = None


def get_core_engine() -> CoreEngine:
    """获取默认的 CoreEngine 实例（单例），按配置接入 Provider 与本地索引。

    返回的引擎尚未 initialize，由调用方决定何时开始接收消息。
    """
    global _engine
    if _engine is None:
        _engine = CoreEngine(
            completion_provider=create_provider(settings.default_provider),
            index_provider=LocalProjectIndex(),
            runtime=CoreRuntime.create(settings),
            project_id=settings.workspace_root,
        )
        logger.info("service.engine_created", extra={"extra": {"provider": settings.default_provider}})
    return _engine


async def reset_core_engine() -> None:
    """关闭并丢弃默认实例（主要用于测试）。"""
    global _engine
    if _engine is not None:
        await _engine.shutdown()
        _engine = None


async def dispatch_message(payload: Dict[str, Any]) -> List[Dict[str, Any]]:
    """处理一条线路格式的入站消息，返回本次处理期间发出的所有消息（线路格式）。

    Args:
        payload: {"type", "id", "timestamp", "data"}，data 使用 camelCase 字段

    Returns:
        按发出顺序排列的出站消息列表
    """
    engine = get_core_engine()
    if not engine.is_initialized:
        await engine.initialize()
    collected: List[Message] = []
    unsubscribe = engine.subscribe(collected.append)
    try:
        await engine.dispatch(payload)
    finally:
        unsubscribe()
    return [m.to_dict() for m in collected]
