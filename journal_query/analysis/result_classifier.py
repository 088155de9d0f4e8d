"""
Classification of raw sub-question output into execution summaries.

Each sub-question's SQL and vector rows are reduced to a compact
ExecutionSummary the consolidation step can turn into prose: counts,
emotion scores, statistics, filtered entries or semantic matches.
"""
import logging
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from journal_query.orchestration.execution_context import SubQuestionResult
from journal_query.services.sql_executor import detect_sql_query_type
from journal_query.utils.sanitization import truncate_content

logger = logging.getLogger("result_classifier")

COUNT_KEYS = ("total_entries", "total", "count", "entry_count")
EMOTION_SCORE_KEYS = ("score", "avg_score")
CONTENT_KEYS = ("content", "refined text", "transcription text")

MAX_SAMPLE_ENTRIES = 3
MAX_RAW_RESULTS = 5


class ResultType(str, Enum):
    COUNT_ANALYSIS = "count_analysis"
    EMOTION_ANALYSIS = "emotion_analysis"
    STATISTICAL_ANALYSIS = "statistical_analysis"
    FILTERED_ENTRIES = "filtered_entries"
    SEMANTIC_SEARCH = "semantic_search"
    JOURNAL_CONTENT_RETRIEVAL = "journal_content_retrieval"
    NO_ENTRIES_FOUND = "no_entries_found"
    NO_RESULTS = "no_results"


class DataType(str, Enum):
    COUNT = "count"
    EMOTIONS = "emotions"
    STATISTICS = "statistics"
    ENTRIES = "entries"
    NONE = "none"
    MIXED = "mixed"


class ExecutionSummary(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    result_type: ResultType
    data_type: DataType
    summary: str
    count: int = 0
    analysis: Dict[str, Any] = Field(default_factory=dict)
    sample_entries: List[Dict[str, Any]] = Field(default_factory=list)
    total_entries_context: int = 0
    is_mandatory_final_step: Optional[bool] = None
    fallback_info: List[Dict[str, Any]] = Field(default_factory=list)

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)


def calculate_percentage(matched: int, total: int) -> float:
    """matched / total as a percentage rounded to one decimal; 0 when total is 0."""
    if not total or total <= 0:
        return 0.0
    percentage = Decimal(matched * 100) / Decimal(total)
    return float(percentage.quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


def classify(result: SubQuestionResult, total_entries_context: int) -> ExecutionSummary:
    """
    Classify one sub-question's raw output.

    Args:
        result: Raw rows and errors of the sub-question
        total_entries_context: Total entries the subject has, used as the percentage denominator

    Returns:
        ExecutionSummary; first matching rule wins
    """
    total = total_entries_context or 0

    if result.sql_rows:
        query_type = result.sql_query_type or detect_sql_query_type(result.sql_rows)
        if query_type == "filtering":
            summary = _filtered_entries_summary(result.sql_rows, total)
        else:
            summary = _analysis_summary(result.sql_rows, total)
    elif result.vector_rows:
        summary = _semantic_summary(result.vector_rows, total)
        if result.sub_question.is_final_content_retrieval:
            summary.result_type = ResultType.JOURNAL_CONTENT_RETRIEVAL
            summary.is_mandatory_final_step = True
    elif result.sql_executed:
        summary = _no_entries_summary(total)
    else:
        summary = ExecutionSummary(
            result_type=ResultType.NO_RESULTS,
            data_type=DataType.NONE,
            summary="No matching entries found",
            total_entries_context=total,
        )

    summary.fallback_info = list(result.fallback_info)
    logger.debug(f"Classified {result.id} as {summary.result_type.value}")
    return summary


# ============================================================================
# ANALYSIS QUERIES
# ============================================================================

def _analysis_summary(rows: List[Dict[str, Any]], total: int) -> ExecutionSummary:
    count_value = _single_row_count(rows)
    if count_value is not None:
        return ExecutionSummary(
            result_type=ResultType.COUNT_ANALYSIS,
            data_type=DataType.COUNT,
            summary=f"Found {count_value} matching journal entries",
            count=count_value,
            analysis={"totalEntries": count_value},
            total_entries_context=total,
        )

    if any(_is_emotion_row(row) for row in rows):
        return _emotion_summary(rows, total)

    return ExecutionSummary(
        result_type=ResultType.STATISTICAL_ANALYSIS,
        data_type=DataType.STATISTICS,
        summary=f"Statistical analysis computed with {len(rows)} data points",
        count=len(rows),
        analysis={"rawResults": rows[:MAX_RAW_RESULTS]},
        total_entries_context=total,
    )


def _single_row_count(rows: List[Dict[str, Any]]) -> Optional[int]:
    if len(rows) != 1:
        return None
    for key in COUNT_KEYS:
        value = rows[0].get(key)
        if value is None:
            continue
        try:
            return int(value)
        except (TypeError, ValueError):
            return None
    return None


def _is_emotion_row(row: Dict[str, Any]) -> bool:
    if any(key in row for key in ("emotion", "avg_sentiment", "score", "avg_score")):
        return True
    return any("emotion" in str(key).lower() for key in row)


def _emotion_summary(rows: List[Dict[str, Any]], total: int) -> ExecutionSummary:
    emotions: Dict[str, Dict[str, Any]] = {}
    for row in rows:
        label = row.get("emotion")
        score = next((row[key] for key in EMOTION_SCORE_KEYS if row.get(key) is not None), None)
        if not label or score is None:
            continue
        try:
            score = round(float(score), 2)
        except (TypeError, ValueError):
            continue
        emotions[str(label)] = {
            "score": score,
            "occurrences": row.get("entry_count") or row.get("count") or 1,
        }

    if emotions:
        top = sorted(emotions.items(), key=lambda item: item[1]["score"], reverse=True)[:3]
        text = "Emotion analysis: " + ", ".join(f"{label} ({data['score']})" for label, data in top)
    else:
        text = f"Emotion analysis completed with {len(rows)} data points"

    return ExecutionSummary(
        result_type=ResultType.EMOTION_ANALYSIS,
        data_type=DataType.EMOTIONS,
        summary=text,
        count=len(rows),
        analysis=emotions,
        total_entries_context=total,
    )


# ============================================================================
# ENTRY RESULTS
# ============================================================================

def _filtered_entries_summary(rows: List[Dict[str, Any]], total: int) -> ExecutionSummary:
    matched = len(rows)
    percentage = calculate_percentage(matched, total)
    return ExecutionSummary(
        result_type=ResultType.FILTERED_ENTRIES,
        data_type=DataType.ENTRIES,
        summary=f"Found {matched} matching entries ({percentage}% of total {total} entries)",
        count=matched,
        analysis={"matchedEntries": matched, "totalEntries": total, "percentage": percentage},
        sample_entries=[_entry_sample(row) for row in rows[:MAX_SAMPLE_ENTRIES]],
        total_entries_context=total,
    )


def _semantic_summary(rows: List[Dict[str, Any]], total: int) -> ExecutionSummary:
    similarities = [float(row.get("similarity") or 0) for row in rows]
    average = round(sum(similarities) / len(similarities), 3) if similarities else 0.0
    return ExecutionSummary(
        result_type=ResultType.SEMANTIC_SEARCH,
        data_type=DataType.ENTRIES,
        summary=f"Found {len(rows)} semantically relevant entries (avg similarity: {average})",
        count=len(rows),
        analysis={"averageSimilarity": average, "resultCount": len(rows)},
        sample_entries=[_entry_sample(row, include_similarity=True) for row in rows[:MAX_SAMPLE_ENTRIES]],
        total_entries_context=total,
    )


def _no_entries_summary(total: int) -> ExecutionSummary:
    return ExecutionSummary(
        result_type=ResultType.NO_ENTRIES_FOUND,
        data_type=DataType.ENTRIES,
        summary="No entries found matching the specified criteria",
        analysis={"matchedEntries": 0, "totalEntries": total, "percentage": 0},
        total_entries_context=total,
    )


def _entry_sample(row: Dict[str, Any], include_similarity: bool = False) -> Dict[str, Any]:
    content = next((row[key] for key in CONTENT_KEYS if row.get(key)), None)
    sample = {
        "id": row.get("id"),
        "content": truncate_content(content) if content else "No content available",
        "created_at": row.get("created_at"),
        "themes": row.get("master_themes") or row.get("themes") or [],
        "emotions": row.get("emotions") or {},
    }
    if include_similarity or "similarity" in row:
        sample["similarity"] = row.get("similarity") or 0
    if row.get("sentiment") is not None:
        sample["sentiment"] = row["sentiment"]
    return sample
