"""
Tests for result classification.
"""
import pytest

from journal_query.analysis.result_classifier import (
    DataType,
    ResultType,
    calculate_percentage,
    classify,
)
from journal_query.orchestration.execution_context import SubQuestionResult
from journal_query.orchestration.plan_models import SubQuestion


# ============================================================================
# FIXTURES
# ============================================================================

def sub_question(sq_id="sq1", **extra):
    return SubQuestion.model_validate({
        "id": sq_id,
        "question": "How was work?",
        "analysisSteps": [{"queryType": "vector_search", "vectorSearch": {"query": "work"}}],
        **extra,
    })


def result(sql_rows=None, vector_rows=None, sql_query_type=None, sql_executed=None, sq=None, **extra):
    return SubQuestionResult(
        sub_question=sq or sub_question(),
        sql_rows=sql_rows or [],
        vector_rows=vector_rows or [],
        sql_query_type=sql_query_type,
        sql_executed=bool(sql_rows) if sql_executed is None else sql_executed,
        **extra,
    )


def entry(entry_id, **fields):
    return {"id": entry_id, "content": f"entry {entry_id}", "created_at": "2024-06-01T00:00:00+00:00", **fields}


# ============================================================================
# TEST PERCENTAGE
# ============================================================================

class TestCalculatePercentage:

    def test_rounds_to_one_decimal(self):
        assert calculate_percentage(7, 40) == 17.5
        assert calculate_percentage(1, 3) == 33.3

    def test_exact_halves_round_up(self):
        assert calculate_percentage(1, 16) == 6.3
        assert calculate_percentage(3, 16) == 18.8

    def test_zero_denominator(self):
        assert calculate_percentage(5, 0) == 0


# ============================================================================
# TEST ANALYSIS RESULTS
# ============================================================================

class TestAnalysisClassification:
    """Test count / emotion / statistical detection."""

    def test_count_analysis(self):
        summary = classify(result([{"total_entries": 12}], sql_query_type="analysis"), 40)

        assert summary.result_type == ResultType.COUNT_ANALYSIS
        assert summary.data_type == DataType.COUNT
        assert summary.count == 12
        assert summary.analysis == {"totalEntries": 12}
        assert summary.total_entries_context == 40

    @pytest.mark.parametrize("key", ["total", "count", "entry_count"])
    def test_count_key_variants(self, key):
        summary = classify(result([{key: 4}], sql_query_type="analysis"), 10)

        assert summary.result_type == ResultType.COUNT_ANALYSIS
        assert summary.count == 4

    def test_count_detected_without_declared_type(self):
        summary = classify(result([{"total_entries": 12}]), 40)

        assert summary.result_type == ResultType.COUNT_ANALYSIS

    def test_emotion_analysis(self):
        rows = [
            {"emotion": "calm", "avg_score": 0.412, "entry_count": 5},
            {"emotion": "joy", "avg_score": 0.7349},
            {"emotion": "anxiety", "score": "0.55"},
            {"emotion": "anger", "avg_score": 0.1},
        ]

        summary = classify(result(rows, sql_query_type="analysis"), 40)

        assert summary.result_type == ResultType.EMOTION_ANALYSIS
        assert summary.data_type == DataType.EMOTIONS
        assert summary.analysis["joy"] == {"score": 0.73, "occurrences": 1}
        assert summary.analysis["calm"] == {"score": 0.41, "occurrences": 5}
        assert summary.summary == "Emotion analysis: joy (0.73), anxiety (0.55), calm (0.41)"
        assert summary.count == 4

    def test_statistical_analysis_keeps_first_five_rows(self):
        rows = [{"day": f"2024-06-0{i}", "entries": i} for i in range(1, 8)]

        summary = classify(result(rows, sql_query_type="analysis"), 40)

        assert summary.result_type == ResultType.STATISTICAL_ANALYSIS
        assert summary.data_type == DataType.STATISTICS
        assert summary.analysis["rawResults"] == rows[:5]
        assert summary.count == 7


# ============================================================================
# TEST ENTRY RESULTS
# ============================================================================

class TestEntryClassification:
    """Test filtered, semantic and empty outcomes."""

    def test_filtered_entries_percentage(self):
        rows = [entry(i, master_themes=["work"]) for i in range(7)]

        summary = classify(result(rows, sql_query_type="filtering"), 40)

        assert summary.result_type == ResultType.FILTERED_ENTRIES
        assert summary.analysis == {"matchedEntries": 7, "totalEntries": 40, "percentage": 17.5}
        assert summary.summary == "Found 7 matching entries (17.5% of total 40 entries)"
        assert len(summary.sample_entries) == 3
        assert summary.sample_entries[0]["themes"] == ["work"]

    def test_filtered_entries_zero_denominator(self):
        summary = classify(result([entry(1)], sql_query_type="filtering"), 0)

        assert summary.analysis["percentage"] == 0

    def test_sample_content_fallbacks_and_truncation(self):
        rows = [
            {"id": 1, "refined text": "x" * 800},
            {"id": 2, "transcription text": "spoken words"},
            {"id": 3},
        ]

        samples = classify(result(rows, sql_query_type="filtering"), 10).sample_entries

        assert len(samples[0]["content"]) == 503
        assert samples[1]["content"] == "spoken words"
        assert samples[2]["content"] == "No content available"

    def test_semantic_search(self, journal_rows):
        summary = classify(result(vector_rows=journal_rows), 40)

        assert summary.result_type == ResultType.SEMANTIC_SEARCH
        assert summary.analysis == {"averageSimilarity": 0.365, "resultCount": 2}
        assert summary.sample_entries[0]["similarity"] == 0.42
        assert summary.is_mandatory_final_step is None

    def test_final_content_retrieval(self, journal_rows):
        sq = sub_question("final_content_retrieval")

        summary = classify(result(vector_rows=journal_rows, sq=sq), 40)

        assert summary.result_type == ResultType.JOURNAL_CONTENT_RETRIEVAL
        assert summary.is_mandatory_final_step is True
        assert summary.to_payload()["isMandatoryFinalStep"] is True

    def test_sql_rows_take_precedence_over_vector_rows(self, journal_rows):
        summary = classify(result([{"total_entries": 3}], vector_rows=journal_rows, sql_query_type="analysis"), 10)

        assert summary.result_type == ResultType.COUNT_ANALYSIS

    def test_sql_executed_without_rows(self):
        summary = classify(result(sql_executed=True, sql_query_type="filtering"), 25)

        assert summary.result_type == ResultType.NO_ENTRIES_FOUND
        assert summary.analysis == {"matchedEntries": 0, "totalEntries": 25, "percentage": 0}

    def test_no_results(self):
        summary = classify(result(errors=["Vector search error: provider down"]), 25)

        assert summary.result_type == ResultType.NO_RESULTS
        assert summary.data_type == DataType.NONE
        assert summary.count == 0

    def test_fallback_info_is_carried(self, journal_rows):
        info = [{"reason": "filtering_returned_no_rows", "level": "baseline_fetch", "warning": "..."}]

        summary = classify(result(journal_rows, sql_query_type="filtering", fallback_info=info), 10)

        assert summary.fallback_info == info
        assert summary.to_payload()["fallbackInfo"] == info

    def test_payload_uses_camel_case(self):
        payload = classify(result([{"total_entries": 2}], sql_query_type="analysis"), 5).to_payload()

        assert payload["resultType"] == "count_analysis"
        assert payload["dataType"] == "count"
        assert payload["totalEntriesContext"] == 5
        assert "isMandatoryFinalStep" not in payload
