"""上下文选择与缓存。"""

from corex_core.context.cache import ContextCache
from corex_core.context.selector import ContextSelector, calculate_relevance

__all__ = ["ContextCache", "ContextSelector", "calculate_relevance"]
