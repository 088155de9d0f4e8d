from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from journal_query.orchestration.plan_models import SubQuestion


@dataclass
class SubQuestionResult:
    """Raw output of one sub-question before classification."""
    sub_question: SubQuestion
    sql_rows: List[Dict[str, Any]] = field(default_factory=list)
    vector_rows: List[Dict[str, Any]] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    sql_query_type: Optional[str] = None
    sql_executed: bool = False
    fallback_info: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def id(self) -> str:
        return self.sub_question.id

    @classmethod
    def failed(cls, sub_question: SubQuestion, message: str) -> "SubQuestionResult":
        return cls(sub_question=sub_question, errors=[message])

    def execution_details(self) -> Dict[str, Any]:
        return {
            "sqlResults": self.sql_rows,
            "vectorResults": self.vector_rows,
            "errors": self.errors,
            "sqlQueryType": self.sql_query_type,
            "fallbackInfo": self.fallback_info,
        }


class ExecutionContext:
    """
    Results of the stages completed so far in one plan execution.

    Never mutated: ``with_stage`` returns a new context holding the previous
    stages plus the new batch. A stage number or sub-question id is written once.
    """

    def __init__(
        self,
        stage_results: Optional[Mapping[int, Tuple[SubQuestionResult, ...]]] = None,
        sub_question_results: Optional[Mapping[str, SubQuestionResult]] = None
    ):
        self._stage_results = MappingProxyType(dict(stage_results or {}))
        self._sub_question_results = MappingProxyType(dict(sub_question_results or {}))

    @property
    def stage_results(self) -> Mapping[int, Tuple[SubQuestionResult, ...]]:
        return self._stage_results

    @property
    def sub_question_results(self) -> Mapping[str, SubQuestionResult]:
        return self._sub_question_results

    def with_stage(self, stage: int, results: Sequence[SubQuestionResult]) -> "ExecutionContext":
        if stage in self._stage_results:
            raise ValueError(f"Stage {stage} already recorded")

        by_id = dict(self._sub_question_results)
        for result in results:
            if result.id in by_id:
                raise ValueError(f"Sub-question {result.id} already recorded")
            by_id[result.id] = result

        stages = dict(self._stage_results)
        stages[stage] = tuple(results)
        return ExecutionContext(stages, by_id)

    def get(self, sub_question_id: str) -> Optional[SubQuestionResult]:
        return self._sub_question_results.get(sub_question_id)

    def __contains__(self, sub_question_id: str) -> bool:
        return sub_question_id in self._sub_question_results

    def __len__(self) -> int:
        return len(self._sub_question_results)
