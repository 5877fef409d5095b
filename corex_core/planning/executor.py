"""计划执行器。

handle_plan_request 的流程：

1. 让 Provider 把任务分解成 JSON ``{"steps": [...]}``（有限重试）；
   解析失败时退化为按行拆分，最多取 plan_fallback_max_steps 行，并记录 warning。
2. 构造 Plan（全部步骤 pending，状态 planning），立即发出 planning/progress（第 0 步）。
3. 通过 LangGraph 顺序执行每个步骤：in-progress -> completed / failed，
   每次状态变化都发出 planning/progress；任一步骤失败即停止（fail-fast）。
4. 发出唯一一条 planning/complete，然后把计划从活动表中移除。
"""

from __future__ import annotations

import json
import re
from typing import Dict, List, Optional, Tuple

from corex_core.chat.streaming import Emit
from corex_core.domain.cancellation import CancellationToken
from corex_core.domain.exceptions import RequestCancelledError
from corex_core.domain.models import Plan, PlanStep
from corex_core.engine.runtime import CoreRuntime
from corex_core.infrastructure.errors import ErrorContext, ErrorSeverity, retry
from corex_core.infrastructure.logging.logger import logger
from corex_core.planning.graph import PlanState, build_plan_graph, recursion_limit_for
from corex_core.protocol import (
    Message,
    PlanningCompleteData,
    PlanningProgressData,
    generate_message_id,
    snapshot,
)
from corex_core.providers.base import CompletionProvider

DECOMPOSE_PROMPT = """Break the task below into a short list of concrete steps. Keep every step brief and clear.

Task: {task}
{context}
Answer with JSON only, in this format:
{{
  "steps": [
    "description of step 1",
    "description of step 2"
  ]
}}"""

STEP_PROMPT = """Task: {task}
Step: {step}

Carry out this step and summarize the result in at most two sentences."""

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")


def parse_steps(response: str, max_fallback_steps: int = 10) -> Tuple[List[str], bool]:
    """解析分解结果，返回 (steps, structured)。

    structured 为 False 表示走了按行拆分的降级路径。
    """

    match = _JSON_OBJECT.search(response)
    if match:
        try:
            payload = json.loads(match.group(0))
        except json.JSONDecodeError:
            payload = None
        if isinstance(payload, dict) and isinstance(payload.get("steps"), list):
            steps = [str(s).strip() for s in payload["steps"] if str(s).strip()]
            return steps, True
    lines = [line.strip() for line in response.splitlines() if line.strip()]
    return lines[:max_fallback_steps], False


class PlanExecutor:
    def __init__(self, provider: CompletionProvider, emit: Emit, runtime: CoreRuntime):
        self._provider = provider
        self._emit = emit
        self._runtime = runtime
        self._active: Dict[str, Plan] = {}
        self._tokens: Dict[str, CancellationToken] = {}
        self._graph = build_plan_graph(self._run_step, self._finalize)

    async def handle_plan_request(
        self,
        request_id: str,
        task: str,
        context: Optional[List[str]] = None,
    ) -> Optional[Plan]:
        """分解并执行一个任务，返回终态计划。

        分解阶段的失败（重试耗尽后）原样抛出，由 Router 转换为 error 消息；
        步骤失败不抛出，而是体现在 planning/complete 的 success=False 上。
        分解阶段被取消时返回 None，不发出 planning/complete。
        """

        settings = self._runtime.settings
        perf = self._runtime.performance
        timer = f"planning-request-{request_id}"
        perf.start(timer)

        token = CancellationToken(request_id)
        self._tokens[request_id] = token
        try:
            try:
                plan = await retry(
                    lambda: self._create_plan(task, context, token),
                    max_attempts=settings.plan_retry_attempts,
                    delay=settings.plan_retry_delay,
                    context=ErrorContext(
                        component="PlanExecutor",
                        operation="create_plan",
                        metadata={"request_id": request_id, "task": task},
                    ),
                )
            except RequestCancelledError:
                logger.info("plan.cancelled", extra={"extra": {"request_id": request_id, "phase": "decompose"}})
                perf.end(timer, {"request_id": request_id, "aborted": True})
                return None

            self._active[request_id] = plan
            self._emit_progress(request_id, plan)

            final_state = await self._graph.ainvoke(
                {"request_id": request_id, "plan": plan, "token": token, "index": 0, "failed": False},
                config={"recursion_limit": recursion_limit_for(plan)},
            )
            plan = final_state["plan"]
            perf.end(
                timer,
                {
                    "request_id": request_id,
                    "step_count": plan.total_steps,
                    "completed_steps": plan.completed_steps,
                    "success": plan.status == "completed",
                },
            )
            return plan
        except Exception:
            perf.end(timer, {"request_id": request_id, "error": True})
            raise
        finally:
            if self._tokens.get(request_id) is token:
                del self._tokens[request_id]
            self._active.pop(request_id, None)

    def get_active_plan(self, request_id: str) -> Optional[Plan]:
        return self._active.get(request_id)

    def active_plan_count(self) -> int:
        return len(self._active)

    async def cleanup(self) -> None:
        """取消所有进行中的计划并清空活动表。"""

        if self._tokens:
            logger.info("plan.cleanup", extra={"extra": {"active": len(self._tokens)}})
        for token in self._tokens.values():
            token.cancel()
        self._tokens.clear()
        self._active.clear()

    async def _create_plan(self, task: str, context: Optional[List[str]], token: CancellationToken) -> Plan:
        settings = self._runtime.settings
        perf = self._runtime.performance
        timer_id = token.request_id
        perf.start("planning-create-plan", timer_id=timer_id)
        try:
            token.raise_if_cancelled()
            prompt = DECOMPOSE_PROMPT.format(
                task=task,
                context="\nContext:\n" + "\n".join(context) + "\n" if context else "",
            )
            response = await self._provider.complete(prompt, settings.default_model, [], token)
        except BaseException:
            perf.end("planning-create-plan", {"error": True}, timer_id=timer_id)
            raise

        steps, structured = parse_steps(response, settings.plan_fallback_max_steps)
        if not structured:
            self._runtime.errors.handle(
                f"Plan decomposition was not valid JSON, fell back to {len(steps)} line-split steps",
                ErrorSeverity.WARNING,
                ErrorContext(component="PlanExecutor", operation="create_plan", metadata={"task": task}),
            )
        plan = Plan(
            id=generate_message_id("plan"),
            task=task,
            steps=[PlanStep(id=f"step-{i}", description=desc) for i, desc in enumerate(steps)],
        )
        perf.end(
            "planning-create-plan",
            {"step_count": len(steps), "structured": structured, "has_context": bool(context)},
            timer_id=timer_id,
        )
        return plan

    async def _run_step(self, state: PlanState) -> bool:
        request_id = state["request_id"]
        plan = state["plan"]
        index = state["index"]
        token = state.get("token") or CancellationToken(request_id)
        step = plan.steps[index]
        settings = self._runtime.settings
        perf = self._runtime.performance

        plan.current_step = index
        step.advance("in-progress")
        self._emit_progress(request_id, plan)

        perf.start(f"planning-step-{step.id}", timer_id=request_id)
        try:
            result = await retry(
                lambda: self._execute_step(step, plan.task, token),
                max_attempts=settings.step_retry_attempts,
                delay=settings.step_retry_delay,
                context=ErrorContext(
                    component="PlanExecutor",
                    operation="execute_step",
                    metadata={"request_id": request_id, "step_id": step.id},
                ),
            )
        except RequestCancelledError:
            step.error = "Cancelled"
            step.advance("failed")
            plan.status = "failed"
            perf.end(f"planning-step-{step.id}", {"step_id": step.id, "aborted": True}, timer_id=request_id)
            logger.info("plan.cancelled", extra={"extra": {"request_id": request_id, "step_id": step.id}})
            return False
        except Exception as exc:  # noqa: BLE001 - 步骤失败体现在计划状态上
            step.error = str(exc) or type(exc).__name__
            step.advance("failed")
            plan.status = "failed"
            perf.end(f"planning-step-{step.id}", {"step_id": step.id, "error": True}, timer_id=request_id)
            self._runtime.errors.handle(
                exc,
                ErrorSeverity.ERROR,
                ErrorContext(
                    component="PlanExecutor",
                    operation="execute_step",
                    metadata={"request_id": request_id, "step_id": step.id, "step_description": step.description},
                ),
            )
            return False

        step.result = result
        step.advance("completed")
        perf.end(f"planning-step-{step.id}", {"step_id": step.id, "result_length": len(result)}, timer_id=request_id)
        self._emit_progress(request_id, plan)
        return True

    async def _execute_step(self, step: PlanStep, task: str, token: CancellationToken) -> str:
        token.raise_if_cancelled()
        prompt = STEP_PROMPT.format(task=task, step=step.description)
        return await self._provider.complete(prompt, self._runtime.settings.default_model, [], token)

    async def _finalize(self, state: PlanState) -> None:
        plan = state["plan"]
        self._emit(
            Message(
                type="planning/complete",
                data=PlanningCompleteData(
                    request_id=state["request_id"],
                    plan=snapshot(plan),
                    success=plan.status == "completed",
                ),
            )
        )

    def _emit_progress(self, request_id: str, plan: Plan) -> None:
        self._emit(
            Message(
                type="planning/progress",
                data=PlanningProgressData(
                    request_id=request_id,
                    plan=snapshot(plan),
                    current_step=plan.current_step,
                    total_steps=plan.total_steps,
                ),
            )
        )
