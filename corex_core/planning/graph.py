"""计划执行的 LangGraph 构建。

图结构固定为：

    begin -> step -> step -> ... -> finalize -> END

每个 step 节点执行一个步骤；任何步骤失败（包括被取消）后直接进入 finalize，
剩余步骤保持 pending（fail-fast）。步骤本身如何执行由 PlanExecutor 提供。
"""

from __future__ import annotations

from typing import Awaitable, Callable, Optional, TypedDict

from langgraph.graph import END, StateGraph
from langgraph.graph.state import CompiledStateGraph

from corex_core.domain.cancellation import CancellationToken
from corex_core.domain.models import Plan
from corex_core.infrastructure.logging.logger import logger


class PlanState(TypedDict, total=False):
    request_id: str
    plan: Plan
    token: Optional[CancellationToken]
    index: int
    failed: bool


# 执行 state["plan"].steps[state["index"]]，成功返回 True
StepRunner = Callable[[PlanState], Awaitable[bool]]
Finalizer = Callable[[PlanState], Awaitable[None]]


def route_after_step(state: PlanState) -> str:
    if state.get("failed"):
        return "finalize"
    if state.get("index", 0) >= len(state["plan"].steps):
        return "finalize"
    return "step"


def build_plan_graph(run_step: StepRunner, finalize: Finalizer) -> CompiledStateGraph:
    async def begin_node(state: PlanState) -> PlanState:
        plan = state["plan"]
        plan.status = "executing"
        logger.info(
            "plan_graph.begin",
            extra={"extra": {"request_id": state.get("request_id"), "plan_id": plan.id, "steps": len(plan.steps)}},
        )
        return {"index": 0, "failed": False}

    async def step_node(state: PlanState) -> PlanState:
        ok = await run_step(state)
        return {"index": state["index"] + 1, "failed": not ok}

    async def finalize_node(state: PlanState) -> PlanState:
        plan = state["plan"]
        if state.get("failed"):
            plan.status = "failed"
        elif plan.status != "failed":
            plan.status = "completed"
        await finalize(state)
        logger.info(
            "plan_graph.end",
            extra={"extra": {"request_id": state.get("request_id"), "plan_id": plan.id, "status": plan.status}},
        )
        return {}

    graph = StateGraph(PlanState)
    graph.add_node("begin", begin_node)
    graph.add_node("step", step_node)
    graph.add_node("finalize", finalize_node)
    graph.set_entry_point("begin")
    graph.add_conditional_edges("begin", route_after_step, {"step": "step", "finalize": "finalize"})
    graph.add_conditional_edges("step", route_after_step, {"step": "step", "finalize": "finalize"})
    graph.add_edge("finalize", END)
    return graph.compile()


def recursion_limit_for(plan: Plan) -> int:
    """begin + 每步一个超步 + finalize，再留一点余量。"""

    return len(plan.steps) + 5
