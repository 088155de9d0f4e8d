"""
Query plan execution engine for journal chat.

Entry point: journal_query.core.engine_factory.build_plan_executor(), then
PlanExecutor.execute_plan(plan, subject_id).
"""

__version__ = "1.0.0"
