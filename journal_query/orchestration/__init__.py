"""
Orchestration Module

Plan models and the stage scheduler that executes them.

Components:
- plan_models: QueryPlan / SubQuestion / AnalysisStep parsing and validation
- execution_context: Immutable per-stage record of sub-question results
- plan_executor: Runs stages in order, sub-questions concurrently, then classifies

Architecture:
┌─────────────────────────────────────────────────────────────┐
│                 PlanExecutor.execute_plan                   │
│            (parse_plan → stage groups → LangGraph)          │
└─────────────────────────────────────────────────────────────┘
                            │
                            ▼
┌─────────────────────────────────────────────────────────────┐
│                      execute_stage                          │
│         (sub-questions of one stage, concurrently)          │
└─────────────────────────────────────────────────────────────┘
                            │
                   ┌────────┴────────┐
                   │                 │
                   ▼                 ▼
         ┌──────────────┐    ┌──────────────┐
         │SqlStep       │    │VectorStep    │
         │Executor      │    │Executor      │
         └──────────────┘    └──────────────┘
                   │
                   ▼
         ┌──────────────┐
         │FallbackEngine│
         └──────────────┘
                            │
                            ▼
                  ┌──────────────────┐
                  │ result_classifier│
                  └──────────────────┘

plan_executor is not re-exported here: the services import plan_models
through this package.
"""

from journal_query.orchestration.plan_models import (
    QueryPlan,
    SubQuestion,
    SqlAnalysisStep,
    VectorSearchStep,
    HybridSearchStep,
    TimeRange,
    parse_plan,
    validate_plan
)

from journal_query.orchestration.execution_context import (
    ExecutionContext,
    SubQuestionResult
)

__all__ = [
    # Plan
    "QueryPlan",
    "SubQuestion",
    "SqlAnalysisStep",
    "VectorSearchStep",
    "HybridSearchStep",
    "TimeRange",
    "parse_plan",
    "validate_plan",

    # Execution
    "ExecutionContext",
    "SubQuestionResult",
]
