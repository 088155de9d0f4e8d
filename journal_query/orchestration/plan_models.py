import logging
from collections import OrderedDict
from datetime import datetime, timezone
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from journal_query.exceptions import PlanValidationError

logger = logging.getLogger("plan_models")

# Sub-question id the planner uses for the closing content-retrieval search
FINAL_CONTENT_RETRIEVAL_ID = "final_content_retrieval"


class PlanModel(BaseModel):
    """Base for plan models: camelCase on the wire, frozen once validated."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="ignore",
    )


# ============================================================================
# STEP MODELS
# ============================================================================

class TimeRange(PlanModel):
    """Inclusive time window; either bound may be open."""
    start: Optional[datetime] = None
    end: Optional[datetime] = None

    @field_validator("start", "end")
    @classmethod
    def assume_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        # Naive timestamps from the planner are UTC
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @property
    def is_bounded(self) -> bool:
        return self.start is not None or self.end is not None

    def as_params(self) -> Dict[str, Optional[str]]:
        return {
            "start": self.start.isoformat() if self.start else None,
            "end": self.end.isoformat() if self.end else None,
        }


class VectorSearchParams(PlanModel):
    query: str = Field(..., min_length=1)
    threshold: float = Field(default=0.15, gt=0, le=1)
    limit: int = Field(default=25, gt=0)


class AnalysisStepBase(PlanModel):
    step: Optional[int] = None
    description: Optional[str] = None
    time_range: Optional[TimeRange] = None
    result_context: Optional[str] = None


class SqlAnalysisStep(AnalysisStepBase):
    query_type: Literal["sql_analysis"]
    sql_query_type: Optional[Literal["analysis", "filtering"]] = None
    sql_query: Optional[str] = None


class VectorSearchStep(AnalysisStepBase):
    query_type: Literal["vector_search"]
    vector_search: VectorSearchParams


class HybridSearchStep(AnalysisStepBase):
    query_type: Literal["hybrid_search"]
    sql_query_type: Optional[Literal["analysis", "filtering"]] = None
    sql_query: Optional[str] = None
    vector_search: Optional[VectorSearchParams] = None


AnalysisStep = Annotated[
    Union[SqlAnalysisStep, VectorSearchStep, HybridSearchStep],
    Field(discriminator="query_type"),
]


# ============================================================================
# PLAN MODELS
# ============================================================================

class SubQuestion(PlanModel):
    """
    One unit of analysis within a plan.

    Steps always run sequentially; ``execution_mode`` is advisory only.
    """
    id: Optional[str] = None
    question: str = ""
    purpose: Optional[str] = None
    execution_stage: int = Field(default=1, ge=1)
    dependencies: List[str] = Field(default_factory=list)
    execution_mode: Literal["parallel", "sequential", "conditional"] = "parallel"
    analysis_steps: List[AnalysisStep] = Field(..., min_length=1)
    is_mandatory_final_step: bool = False

    @property
    def is_final_content_retrieval(self) -> bool:
        return self.is_mandatory_final_step or self.id == FINAL_CONTENT_RETRIEVAL_ID


class QueryPlan(PlanModel):
    sub_questions: List[SubQuestion] = Field(..., min_length=1)
    strategy: Optional[str] = None
    expected_response_type: Optional[str] = None
    confidence: Optional[float] = None
    reasoning: Optional[str] = None

    def stage_groups(self) -> "OrderedDict[int, List[SubQuestion]]":
        """Sub-questions grouped by execution stage, stages ascending, plan order kept within a stage."""
        groups: Dict[int, List[SubQuestion]] = {}
        for sub_question in self.sub_questions:
            groups.setdefault(sub_question.execution_stage, []).append(sub_question)
        return OrderedDict(sorted(groups.items()))


# ============================================================================
# PARSING & VALIDATION
# ============================================================================

def assign_sub_question_ids(plan: QueryPlan) -> QueryPlan:
    """
    Return a plan where every sub-question has an id.

    Generated ids are ``sq{n}`` with ``n`` the 1-based position; when that id
    is already declared by another sub-question the next free number is used.
    """
    if all(sq.id for sq in plan.sub_questions):
        return plan

    taken = {sq.id for sq in plan.sub_questions if sq.id}
    sub_questions = []
    for index, sq in enumerate(plan.sub_questions):
        if not sq.id:
            number = index + 1
            while f"sq{number}" in taken:
                number += 1
            taken.add(f"sq{number}")
            sq = sq.model_copy(update={"id": f"sq{number}"})
        sub_questions.append(sq)
    return plan.model_copy(update={"sub_questions": sub_questions})


def parse_plan(raw_plan: Union[QueryPlan, Dict[str, Any]]) -> QueryPlan:
    """
    Parse planner output into a validated QueryPlan.

    Args:
        raw_plan: Plan dict (camelCase keys) or an already-built QueryPlan

    Returns:
        QueryPlan with ids assigned and structure validated

    Raises:
        PlanValidationError: If the plan is malformed
    """
    if isinstance(raw_plan, QueryPlan):
        plan = raw_plan
    else:
        try:
            plan = QueryPlan.model_validate(raw_plan)
        except ValidationError as e:
            raise PlanValidationError(f"Invalid query plan: {e}") from e

    plan = assign_sub_question_ids(plan)
    validate_plan(plan)
    return plan


def validate_plan(plan: QueryPlan) -> None:
    """
    Validate plan structure.

    Checks:
    - Sub-question ids are unique
    - Dependencies reference existing sub-questions
    - No sub-question depends on itself or on a later stage
    - No dependency cycle among sub-questions of the same stage

    Raises:
        PlanValidationError: If the plan is invalid
    """
    by_id: Dict[str, SubQuestion] = {}
    for sub_question in plan.sub_questions:
        if sub_question.id in by_id:
            raise PlanValidationError(f"Duplicate sub-question id: {sub_question.id}")
        by_id[sub_question.id] = sub_question

    for sub_question in plan.sub_questions:
        for dep_id in sub_question.dependencies:
            if dep_id == sub_question.id:
                raise PlanValidationError(f"Sub-question {sub_question.id} depends on itself")
            dependency = by_id.get(dep_id)
            if dependency is None:
                raise PlanValidationError(f"Sub-question {sub_question.id} depends on unknown sub-question {dep_id}")
            if dependency.execution_stage > sub_question.execution_stage:
                raise PlanValidationError(
                    f"Sub-question {sub_question.id} (stage {sub_question.execution_stage}) "
                    f"depends on {dep_id} from later stage {dependency.execution_stage}"
                )
            if dependency.execution_stage == sub_question.execution_stage:
                logger.warning(
                    f"Sub-question {sub_question.id} depends on {dep_id} in the same stage "
                    f"{sub_question.execution_stage}; its result will not be visible until the stage completes"
                )

    _reject_cycles(by_id)
    logger.info(f"Plan is valid (sub-questions: {len(plan.sub_questions)}, stages: {len(plan.stage_groups())})")


def _reject_cycles(by_id: Dict[str, SubQuestion]) -> None:
    visiting, done = set(), set()

    def visit(node_id: str, path: List[str]) -> None:
        if node_id in done:
            return
        if node_id in visiting:
            cycle = " -> ".join(path + [node_id])
            raise PlanValidationError(f"Cyclic dependency: {cycle}")
        visiting.add(node_id)
        for dep_id in by_id[node_id].dependencies:
            visit(dep_id, path + [node_id])
        visiting.discard(node_id)
        done.add(node_id)

    for node_id in by_id:
        visit(node_id, [])
