"""
Tests for the results analyzer and scoring.

Covers the calculation methods, range lookup, overall risk,
recommendations, interpretations and the result history operations.
"""

import json
import datetime

import pytest

from selfassess.assessments.analyzer import ResultsAnalyzer, score_trend
from selfassess.assessments.models import AssessmentSession, AssessmentType, RiskLevel, SessionStatus
from selfassess.assessments.question_bank import QuestionBank
from selfassess.assessments.scoring import FormulaRegistry, numeric_value
from selfassess.common.config import AssessmentConfig
from selfassess.common.error_handling import (
    AssessmentTypeNotFoundError,
    ErrorCode,
    ScoringError,
)
from selfassess.common.serialization import utcnow
from selfassess.i18n.translator import Translator
from selfassess.storage.store import SessionStore

SCALE = {"scale_min": 0, "scale_max": 4, "scale_step": 1}


def wellbeing_definition():
    return AssessmentType.from_dict({
        "id": "wellbeing",
        "name": "Wellbeing Check",
        "description": "Short wellbeing questionnaire",
        "category": "mood",
        "questions": [
            {"id": "w1", "text": "Energy", "type": "scale", "constraints": SCALE},
            {"id": "w2", "text": "Tension", "type": "scale", "constraints": SCALE},
            {"id": "w3", "text": "Sleep trouble", "type": "scale", "required": False, "constraints": SCALE},
            {"id": "w4", "text": "Worries", "type": "multiple_choice", "required": False,
             "constraints": {"options": [
                 {"id": "a", "text": "Work", "value": 1},
                 {"id": "b", "text": "Health", "value": 2},
                 {"id": "c", "text": "Money", "value": 3},
             ]}},
            {"id": "w5", "text": "Anything else?", "type": "text", "required": False},
        ],
        "scoring_rules": [
            {"id": "wb-average", "name": "Average strain", "method": "average",
             "question_ids": ["w1", "w2", "w3"],
             "ranges": [
                 {"min": 0, "max": 2, "label": "Calm", "risk_level": "low"},
                 {"min": 3, "max": 4, "label": "Strained", "risk_level": "high",
                  "recommendations": ["Rest", "Talk to someone", "Take breaks", "Rest"]},
             ]},
            {"id": "wb-weighted", "name": "Weighted strain", "method": "weighted_sum",
             "question_ids": ["w1", "w2"], "weights": {"w1": 2},
             "ranges": [{"min": 0, "max": 20, "label": "Weighted"}]},
            {"id": "wb-peak", "name": "Peak item", "method": "custom", "formula": "max_item",
             "question_ids": ["w1", "w2", "w3"],
             "ranges": [{"min": 0, "max": 10, "label": "Peak"}]},
            {"id": "wb-choices", "name": "Worry load", "method": "sum",
             "question_ids": ["w4", "w5"],
             "ranges": [{"min": 0, "max": 6, "label": "Choices", "risk_level": "medium",
                         "recommendations": ["Take breaks", "Walk outside", "Limit caffeine",
                                             "Journal", "Sleep early"]}]},
        ],
    })


async def build_analyzer(store=None, **kwargs):
    bank = QuestionBank(assessment_types=[wellbeing_definition()])
    await bank.initialize()
    store = store or SessionStore()
    await store.initialize()
    return ResultsAnalyzer(bank, store, Translator.from_locale_files(), **kwargs)


def completed_session(assessment_type_id, answers, language="en", completed_at=None):
    session = AssessmentSession.create(assessment_type_id, language)
    for question_id, value in answers.items():
        session.upsert_answer(question_id, value)
    session.status = SessionStatus.COMPLETED
    session.completed_at = completed_at or utcnow()
    return session


def phq9_answers(value):
    return {f"phq9-{n}": value for n in range(1, 10)}


@pytest.mark.asyncio
async def test_phq9_moderately_severe_and_severe():
    analyzer = await build_analyzer()

    moderate = await analyzer.analyze_session(completed_session("phq-9", phq9_answers(2)))
    assert moderate.scores["phq9-total"].value == 18
    assert moderate.scores["phq9-total"].label == "Moderately Severe"
    assert moderate.risk_level == RiskLevel.MEDIUM

    severe = await analyzer.analyze_session(completed_session("phq-9", phq9_answers(3)))
    assert severe.scores["phq9-total"].value == 27
    assert severe.scores["phq9-total"].label == "Severe"
    assert severe.risk_level == RiskLevel.HIGH


@pytest.mark.asyncio
async def test_option_ids_score_like_raw_values():
    analyzer = await build_analyzer()
    by_id = {f"phq9-{n}": f"phq9-{n}-2" for n in range(1, 10)}

    result = await analyzer.analyze_session(completed_session("phq-9", by_id))
    assert result.scores["phq9-total"].value == 18


@pytest.mark.asyncio
async def test_incomplete_session_is_not_analyzed():
    analyzer = await build_analyzer()
    session = AssessmentSession.create("phq-9")
    session.upsert_answer("phq9-1", 3)

    assert await analyzer.analyze_session(session) is None
    session.status = SessionStatus.PAUSED
    assert await analyzer.analyze_session(session) is None
    assert await analyzer.get_all_results() == []


@pytest.mark.asyncio
async def test_unknown_assessment_type():
    analyzer = await build_analyzer()
    with pytest.raises(AssessmentTypeNotFoundError):
        await analyzer.analyze_session(completed_session("retired-test", {}))


@pytest.mark.asyncio
async def test_average_excludes_unanswered_questions():
    """w3 is unanswered: (2 + 4) / 2 = 3, not (2 + 4) / 3 = 2."""
    analyzer = await build_analyzer()
    result = await analyzer.analyze_session(completed_session("wellbeing", {"w1": 2, "w2": 4}))

    assert result.scores["wb-average"].value == 3
    assert result.scores["wb-average"].label == "Strained"


@pytest.mark.asyncio
async def test_calculation_methods():
    analyzer = await build_analyzer()
    answers = {"w1": 2, "w2": 4, "w3": 0, "w4": ["a", "c"], "w5": "busy week"}
    result = await analyzer.analyze_session(completed_session("wellbeing", answers))

    assert result.scores["wb-average"].value == 2
    assert result.scores["wb-weighted"].value == 8
    assert result.scores["wb-peak"].value == 4
    # Multiple choice sums option values; text answers carry no score
    assert result.scores["wb-choices"].value == 4
    assert result.risk_level == RiskLevel.MEDIUM


@pytest.mark.asyncio
async def test_repeated_choices_score_once():
    analyzer = await build_analyzer()
    result = await analyzer.analyze_session(
        completed_session("wellbeing", {"w1": 1, "w2": 1, "w4": ["c", "c", "c"]})
    )

    assert result.scores["wb-choices"].value == 3
    assert result.scores["wb-choices"].label == "Choices"


def test_multiple_choice_scores_option_ids_only():
    question = wellbeing_definition().get_question("w4")

    assert numeric_value(question, ["a", "c", "a"]) == 4
    # Raw option values are not selections
    assert numeric_value(question, [1, 3]) == 0
    assert numeric_value(question, "a") is None


@pytest.mark.asyncio
async def test_unmatched_score_is_unknown():
    analyzer = await build_analyzer()
    result = await analyzer.analyze_session(completed_session("wellbeing", {"w1": 2, "w2": 3}))

    assert result.scores["wb-average"].value == 2.5
    assert result.scores["wb-average"].label == "Unknown"
    assert result.scores["wb-average"].risk_level is None


@pytest.mark.asyncio
async def test_unknown_formula():
    analyzer = await build_analyzer(formulas=FormulaRegistry(include_builtins=False))
    with pytest.raises(ScoringError) as excinfo:
        await analyzer.analyze_session(completed_session("wellbeing", {"w1": 1, "w2": 1}))
    assert excinfo.value.code == ErrorCode.UNKNOWN_SCORING_FORMULA


@pytest.mark.asyncio
async def test_registered_formula():
    formulas = FormulaRegistry(include_builtins=False)
    formulas.register("max_item", lambda values, rule: sum(values.values()) * 10)
    analyzer = await build_analyzer(formulas=formulas)

    result = await analyzer.analyze_session(completed_session("wellbeing", {"w1": 0, "w2": 1}))
    assert result.scores["wb-peak"].value == 10


@pytest.mark.asyncio
async def test_recommendations_are_unique_and_capped():
    analyzer = await build_analyzer(config=AssessmentConfig(max_recommendations=8))
    result = await analyzer.analyze_session(
        completed_session("wellbeing", {"w1": 4, "w2": 4, "w4": ["b"]})
    )

    assert result.risk_level == RiskLevel.HIGH
    assert len(result.recommendations) == 8
    assert len(set(result.recommendations)) == len(result.recommendations)
    assert result.recommendations[:3] == ["Rest", "Talk to someone", "Take breaks"]


@pytest.mark.asyncio
async def test_generic_recommendations_follow_risk():
    analyzer = await build_analyzer()
    result = await analyzer.analyze_session(completed_session("phq-9", phq9_answers(0)))

    assert result.risk_level == RiskLevel.LOW
    generic = analyzer.translator.t_list("recommendations.low")
    assert all(item in result.recommendations for item in generic)


@pytest.mark.asyncio
async def test_template_interpretation():
    analyzer = await build_analyzer()
    english = await analyzer.analyze_session(completed_session("phq-9", phq9_answers(1)))
    chinese = await analyzer.analyze_session(completed_session("phq-9", phq9_answers(1), language="zh"))

    assert "Mild" in english.interpretation
    assert "Mild depression symptoms" in english.interpretation
    assert "{{" not in english.interpretation
    assert chinese.scores["phq9-total"].label == "轻度"
    assert "轻度" in chinese.interpretation
    assert chinese.language == "zh"


@pytest.mark.asyncio
async def test_default_interpretation():
    analyzer = await build_analyzer()
    result = await analyzer.analyze_session(completed_session("wellbeing", {"w1": 2, "w2": 4}))

    assert result.interpretation.startswith("Based on your responses to the Wellbeing Check")
    assert "wb-average: Strained (3)" in result.interpretation
    assert result.interpretation.endswith(analyzer.translator.t("results.default_disclaimer"))


@pytest.mark.asyncio
async def test_result_history():
    analyzer = await build_analyzer()
    first_time = utcnow() - datetime.timedelta(days=14)
    first = await analyzer.analyze_session(completed_session("phq-9", phq9_answers(2), completed_at=first_time))
    second = await analyzer.analyze_session(completed_session("phq-9", phq9_answers(1)))
    other = await analyzer.analyze_session(completed_session("wellbeing", {"w1": 1, "w2": 1}))

    assert [r.id for r in await analyzer.get_all_results()] == [first.id, second.id, other.id]
    assert [r.id for r in await analyzer.get_results_by_assessment_type("phq-9")] == [first.id, second.id]
    assert (await analyzer.get_result_for_session(second.session_id)).id == second.id
    assert await analyzer.get_result("missing") is None

    assert await analyzer.delete_result(other.id)
    assert not await analyzer.delete_result(other.id)
    assert len(await analyzer.get_all_results()) == 2


@pytest.mark.asyncio
async def test_report_compares_with_previous_result():
    analyzer = await build_analyzer()
    first = await analyzer.analyze_session(
        completed_session("phq-9", phq9_answers(2), completed_at=utcnow() - datetime.timedelta(days=14))
    )
    second = await analyzer.analyze_session(completed_session("phq-9", phq9_answers(1)))

    report = await analyzer.generate_report(second.id)
    assert report["previous_result_id"] == first.id
    assert report["comparison"]["phq9-total"]["change"] == -9
    assert report["trend"] == "improving"
    assert report["scores"]["phq9-total"]["label"] == "Mild"

    baseline = await analyzer.generate_report(first.id)
    assert baseline["previous_result_id"] is None
    assert baseline["trend"] is None
    assert await analyzer.generate_report("missing") is None


def test_score_trend():
    assert score_trend(10, 10.5, 0.1) == "stable"
    assert score_trend(10, 15, 0.1) == "declining"
    assert score_trend(10, 5, 0.1) == "improving"
    assert score_trend(0, 0, 0.1) == "stable"
    assert score_trend(0, 2, 0.1) == "declining"


@pytest.mark.asyncio
async def test_statistics():
    analyzer = await build_analyzer()
    await analyzer.analyze_session(completed_session("phq-9", phq9_answers(2)))
    await analyzer.analyze_session(completed_session("phq-9", phq9_answers(1)))

    stats = await analyzer.get_statistics()
    assert stats["total_results"] == 2
    assert stats["by_assessment_type"] == {"phq-9": 2}
    assert stats["average_scores"]["phq-9"]["phq9-total"] == 13.5
    assert stats["risk_distribution"] == {"low": 1, "medium": 1, "high": 0}


@pytest.mark.asyncio
async def test_export_and_import():
    analyzer = await build_analyzer()
    first = await analyzer.analyze_session(completed_session("phq-9", phq9_answers(2)))
    payload = await analyzer.export_results()

    target = await build_analyzer()
    assert await target.import_results(payload) == 1
    imported = await target.get_result(first.id)
    assert imported.scores["phq9-total"].label == "Moderately Severe"
    assert imported.interpretation == first.interpretation

    assert await target.import_results(json.dumps([{"id": "partial"}])) == 0
    with pytest.raises(ValueError):
        await target.import_results(json.dumps({"not": "a list"}))
