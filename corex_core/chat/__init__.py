"""聊天请求管理与流式输出。"""

from corex_core.chat.manager import RequestManager
from corex_core.chat.streaming import StreamingPipeline, WordChunker

__all__ = ["RequestManager", "StreamingPipeline", "WordChunker"]
