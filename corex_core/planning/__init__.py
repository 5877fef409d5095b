"""任务分解与顺序执行。"""

from corex_core.planning.executor import PlanExecutor, parse_steps
from corex_core.planning.graph import PlanState, build_plan_graph

__all__ = ["PlanExecutor", "PlanState", "build_plan_graph", "parse_steps"]
