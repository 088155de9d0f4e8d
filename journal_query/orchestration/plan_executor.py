import asyncio
import logging
from typing import Any, Dict, List, Optional, Tuple, TypedDict, Union

from langgraph.graph import END, StateGraph
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from journal_query.analysis.result_classifier import ExecutionSummary, classify
from journal_query.config import EngineConfig
from journal_query.exceptions import ConnectivityError, QueryError
from journal_query.orchestration.execution_context import ExecutionContext, SubQuestionResult
from journal_query.orchestration.plan_models import (
    HybridSearchStep,
    QueryPlan,
    SqlAnalysisStep,
    SubQuestion,
    VectorSearchStep,
    parse_plan,
)
from journal_query.repositories.journal_repository import JournalRepository
from journal_query.services.embedding_service import EmbeddingService
from journal_query.services.fallback_engine import FallbackEngine
from journal_query.services.sql_executor import SqlStepExecutor
from journal_query.services.step_results import StepOutcome
from journal_query.services.vector_executor import VectorStepExecutor
from journal_query.utils.request_context import (
    get_request_id,
    reset_request_context,
    set_request_context,
)

logger = logging.getLogger("plan_executor")

PLAN_DEADLINE_EXCEEDED = "Plan deadline exceeded"


# ============================================================================
# State Management
# ============================================================================

class PlanExecutionState(TypedDict):
    """
    State threaded through the stage loop.

    ``context`` is replaced, never mutated, after every stage.
    """
    stages: List[int]  # Stage numbers in execution order
    stage_groups: Dict[int, List[SubQuestion]]
    subject_id: str
    user_timezone: str
    deadline: Optional[float]  # Event-loop time after which nothing new starts
    current_stage_index: int
    context: ExecutionContext


class ProcessedResult(BaseModel):
    """Classified output of one sub-question, as handed to the consolidator."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    sub_question: SubQuestion
    execution_summary: ExecutionSummary
    execution_details: Dict[str, Any]

    def to_payload(self) -> Dict[str, Any]:
        return {
            "subQuestion": self.sub_question.model_dump(by_alias=True, mode="json"),
            "executionSummary": self.execution_summary.to_payload(),
            "executionDetails": self.execution_details,
        }


class PlanExecutor:
    """
    Executes query plans stage by stage.

    Stages run strictly in ascending order; sub-questions inside a stage run
    concurrently and steps inside a sub-question run one after another. A
    failing sub-question only affects its own result.
    """

    def __init__(
        self,
        repository: JournalRepository,
        embedding_service: EmbeddingService,
        config: Optional[EngineConfig] = None,
        fallback_engine: Optional[FallbackEngine] = None
    ):
        self.config = config or EngineConfig()
        self.repository = repository
        self.vector_executor = VectorStepExecutor(repository, embedding_service)
        self.fallback_engine = fallback_engine or FallbackEngine(
            self.vector_executor, repository, embedding_service, self.config.fallback
        )
        self.sql_executor = SqlStepExecutor(repository, self.fallback_engine, self.config.default_timezone)
        self.graph = self._build_graph()

    # ========================================================================
    # LangGraph Workflow
    # ========================================================================

    def _build_graph(self):
        """
        Workflow:
        1. execute_stage - run every sub-question of the current stage
        2. should_continue - next stage or END
        """
        workflow = StateGraph(PlanExecutionState)
        workflow.add_node("execute_stage", self._execute_stage_node)
        workflow.set_entry_point("execute_stage")
        workflow.add_conditional_edges(
            "execute_stage",
            self._should_continue,
            {
                "continue": "execute_stage",
                "end": END
            }
        )
        return workflow.compile()

    async def _execute_stage_node(self, state: PlanExecutionState) -> dict:
        index = state["current_stage_index"]
        stages = state["stages"]
        if index >= len(stages):
            return {"current_stage_index": index}

        stage = stages[index]
        sub_questions = state["stage_groups"][stage]
        context = state["context"]
        logger.info(f"Executing stage {stage} ({index + 1}/{len(stages)}) with {len(sub_questions)} sub-questions")

        results, timed_out = await self._run_stage(
            sub_questions, context, state["subject_id"], state["user_timezone"], state["deadline"]
        )

        update = {
            "context": context.with_stage(stage, results),
            "current_stage_index": index + 1,
        }
        if timed_out:
            # Once a stage was cut short no later stage may start
            update["deadline"] = float("-inf")
        return update

    def _should_continue(self, state: PlanExecutionState) -> str:
        if state["current_stage_index"] < len(state["stages"]):
            return "continue"
        logger.info("All stages completed")
        return "end"

    # ========================================================================
    # Stage / sub-question execution
    # ========================================================================

    async def _run_stage(
        self,
        sub_questions: List[SubQuestion],
        context: ExecutionContext,
        subject_id: str,
        user_timezone: str,
        deadline: Optional[float]
    ) -> Tuple[List[SubQuestionResult], bool]:
        """
        Run one stage and wait for all of it, or until the plan deadline.

        Returns:
            (results in stage order, whether the deadline cut the stage short)
        """
        loop = asyncio.get_running_loop()
        remaining = None if deadline is None else deadline - loop.time()
        if remaining is not None and remaining <= 0:
            logger.warning(f"Plan deadline passed, skipping {len(sub_questions)} sub-questions")
            return [SubQuestionResult.failed(sq, PLAN_DEADLINE_EXCEEDED) for sq in sub_questions], True

        tasks = [
            asyncio.create_task(self._run_sub_question(sq, context, subject_id, user_timezone))
            for sq in sub_questions
        ]
        _, pending = await asyncio.wait(tasks, timeout=remaining)

        if pending:
            logger.warning(f"Plan deadline exceeded, cancelling {len(pending)} running sub-questions")
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

        results = []
        for sub_question, task in zip(sub_questions, tasks):
            if task in pending:
                results.append(SubQuestionResult.failed(sub_question, PLAN_DEADLINE_EXCEEDED))
            else:
                results.append(task.result())
        return results, bool(pending)

    async def _run_sub_question(
        self,
        sub_question: SubQuestion,
        context: ExecutionContext,
        subject_id: str,
        user_timezone: str
    ) -> SubQuestionResult:
        try:
            return await self._execute_sub_question(sub_question, context, subject_id, user_timezone)
        except Exception as e:
            logger.exception(f"Sub-question {sub_question.id} failed: {e}")
            return SubQuestionResult.failed(sub_question, f"Sub-question execution failed: {e}")

    async def _execute_sub_question(
        self,
        sub_question: SubQuestion,
        context: ExecutionContext,
        subject_id: str,
        user_timezone: str
    ) -> SubQuestionResult:
        logger.info(f"Executing sub-question {sub_question.id}: {sub_question.question}")
        result = SubQuestionResult(sub_question=sub_question)

        for dependency_id in sub_question.dependencies:
            if dependency_id not in context:
                result.errors.append(f"Dependency {dependency_id} has no result")

        for position, step in enumerate(sub_question.analysis_steps, start=1):
            step_label = step.step or position
            try:
                outcomes = await self._execute_step(step, subject_id, user_timezone)
            except Exception as e:
                logger.exception(f"Step {step_label} of {sub_question.id} failed: {e}")
                result.errors.append(f"Step {step_label} failed: {e}")
                continue

            for outcome in outcomes:
                self._merge_outcome(result, outcome)

        logger.info(
            f"Sub-question {sub_question.id} finished: {len(result.sql_rows)} SQL rows, "
            f"{len(result.vector_rows)} vector rows, {len(result.errors)} errors"
        )
        return result

    async def _execute_step(
        self,
        step: Union[SqlAnalysisStep, VectorSearchStep, HybridSearchStep],
        subject_id: str,
        user_timezone: str
    ) -> List[StepOutcome]:
        if isinstance(step, SqlAnalysisStep):
            return [await self.sql_executor.run(step, subject_id, user_timezone)]

        if isinstance(step, VectorSearchStep):
            return [await self.vector_executor.run(step, subject_id)]

        if isinstance(step, HybridSearchStep):
            outcomes = []
            if step.sql_query and step.sql_query.strip():
                outcomes.append(await self.sql_executor.run(step, subject_id, user_timezone))
            if step.vector_search is not None:
                outcomes.append(await self.vector_executor.run(step, subject_id))
            if not outcomes:
                raise ValueError("Hybrid step has neither sqlQuery nor vectorSearch")
            return outcomes

        raise ValueError(f"Unknown step type: {type(step).__name__}")

    @staticmethod
    def _merge_outcome(result: SubQuestionResult, outcome: StepOutcome) -> None:
        if outcome.source == "sql":
            result.sql_rows.extend(outcome.rows)
            result.sql_executed = True
            if result.sql_query_type is None:
                result.sql_query_type = outcome.sql_query_type
        else:
            result.vector_rows.extend(outcome.rows)
        result.errors.extend(outcome.errors)
        if outcome.fallback is not None:
            result.fallback_info.extend(outcome.fallback.provenance)

    # ========================================================================
    # Main Execution Function
    # ========================================================================

    async def execute_plan(
        self,
        plan: Union[QueryPlan, Dict[str, Any]],
        subject_id: str,
        total_entries: Optional[int] = None,
        user_timezone: Optional[str] = None
    ) -> List[ProcessedResult]:
        """
        Execute a query plan and classify every sub-question's output.

        Args:
            plan: QueryPlan or planner dict (camelCase keys)
            subject_id: Identity token of the journal owner
            total_entries: Percentage denominator; counted from the store when None
            user_timezone: Timezone for the dynamic query procedure

        Returns:
            One ProcessedResult per sub-question, in plan order

        Raises:
            PlanValidationError: If the plan is structurally invalid
        """
        token = set_request_context()
        try:
            plan = parse_plan(plan)
            groups = plan.stage_groups()
            stages = list(groups.keys())
            logger.info(
                f"Starting plan execution {get_request_id()}: "
                f"{len(plan.sub_questions)} sub-questions in {len(stages)} stages"
            )

            if total_entries is None:
                total_entries = await self._count_entries(subject_id)

            loop = asyncio.get_running_loop()
            timeout = self.config.plan_timeout_seconds
            initial_state: PlanExecutionState = {
                "stages": stages,
                "stage_groups": dict(groups),
                "subject_id": subject_id,
                "user_timezone": user_timezone or self.config.default_timezone,
                "deadline": loop.time() + timeout if timeout else None,
                "current_stage_index": 0,
                "context": ExecutionContext(),
            }

            final_state = await self.graph.ainvoke(
                initial_state,
                config={"recursion_limit": len(stages) + 5}
            )
            context: ExecutionContext = final_state["context"]

            processed = []
            for sub_question in plan.sub_questions:
                result = context.get(sub_question.id) or SubQuestionResult.failed(
                    sub_question, "Sub-question was not executed"
                )
                processed.append(ProcessedResult(
                    sub_question=sub_question,
                    execution_summary=classify(result, total_entries),
                    execution_details=result.execution_details(),
                ))

            logger.info(f"Plan execution complete: {len(processed)} results")
            return processed
        finally:
            reset_request_context(token)

    async def _count_entries(self, subject_id: str) -> int:
        try:
            return await self.repository.count_entries(subject_id)
        except (ConnectivityError, QueryError) as e:
            logger.warning(f"Could not count journal entries, using 0 as denominator: {e}")
            return 0
