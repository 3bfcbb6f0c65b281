"""
Results Analyzer

Turns completed sessions into AssessmentResults: per-rule scores and bands,
overall risk, recommendations and a localized interpretation. Results are
persisted through the SessionStore and can be listed, compared over time,
exported and imported.
"""

import re
import json
import uuid
import logging
from collections import defaultdict
from typing import Any, Dict, List, Optional

from selfassess.assessments.models import (
    AssessmentResult,
    AssessmentSession,
    AssessmentType,
    RiskLevel,
    RuleScore,
    SessionStatus,
)
from selfassess.assessments.question_bank import QuestionBank
from selfassess.assessments.scoring import FormulaRegistry, calculate_score, collect_values
from selfassess.common.config import AssessmentConfig
from selfassess.common.error_handling import AssessmentTypeNotFoundError
from selfassess.common.logger import log_execution_time
from selfassess.common.serialization import utcnow
from selfassess.i18n.translator import Translator
from selfassess.storage.store import RESULT_RECORD, SessionStore, result_record_id

logger = logging.getLogger(__name__)

PLACEHOLDER = re.compile(r"\{\{([^{}]+)\}\}")

TREND_IMPROVING = "improving"
TREND_STABLE = "stable"
TREND_DECLINING = "declining"


def format_score(value: float) -> Any:
    return int(value) if float(value).is_integer() else round(value, 2)


def score_trend(previous: float, current: float, threshold: float) -> str:
    """
    Compare two scores of the same rule.

    Changes within ``threshold`` (relative to the previous score) are stable.
    Higher scores mean more symptoms, so a rise is declining.
    """
    change = current - previous
    if abs(change) <= abs(previous) * threshold:
        return TREND_STABLE
    return TREND_DECLINING if change > 0 else TREND_IMPROVING


class ResultsAnalyzer:
    """
    Scores completed sessions and manages result history.

    Args:
        question_bank: Initialized QuestionBank
        store: Initialized SessionStore
        translator: Translator for generic texts; bundled locales when omitted
        config: Assessment configuration
        formulas: Registry for custom scoring formulas
    """

    def __init__(
        self,
        question_bank: QuestionBank,
        store: SessionStore,
        translator: Optional[Translator] = None,
        config: Optional[AssessmentConfig] = None,
        formulas: Optional[FormulaRegistry] = None
    ):
        self.question_bank = question_bank
        self.store = store
        self.translator = translator or Translator.from_locale_files()
        self.config = config or AssessmentConfig()
        self.formulas = formulas or FormulaRegistry()

    @log_execution_time()
    async def analyze_session(self, session: AssessmentSession) -> Optional[AssessmentResult]:
        """
        Score a completed session and persist the result.

        Args:
            session: The session to analyze

        Returns:
            The persisted result, or None when the session is not completed

        Raises:
            AssessmentTypeNotFoundError: If the session's assessment type is unknown
            ScoringError: If a custom rule names an unregistered formula
            StorageError: If the result cannot be saved
        """
        if session.status != SessionStatus.COMPLETED:
            logger.debug(f"Session {session.id} is {session.status.value}; nothing to analyze")
            return None

        assessment_type = self.question_bank.get_assessment_type(session.assessment_type_id)
        if assessment_type is None:
            raise AssessmentTypeNotFoundError(session.assessment_type_id, session_id=session.id)

        language = session.language
        localized = assessment_type.localized(language)

        scores: Dict[str, RuleScore] = {}
        range_recommendations: List[str] = []
        for rule in localized.scoring_rules:
            values = collect_values(rule, assessment_type, session)
            value = calculate_score(rule, values, self.formulas, assessment_type.id)
            score_range = rule.find_range(value)

            if score_range is None:
                logger.warning(f"Score {value} of rule {rule.id} matches no range")
                scores[rule.id] = RuleScore(
                    value=value,
                    label=self.translator.t("results.unknown_label", language=language)
                )
                continue

            scores[rule.id] = RuleScore(
                value=value,
                label=score_range.label,
                description=score_range.description,
                risk_level=score_range.risk_level
            )
            range_recommendations.extend(score_range.recommendations)

        risk_level = RiskLevel.highest(s.risk_level for s in scores.values()) or RiskLevel.LOW

        result = AssessmentResult(
            id=str(uuid.uuid4()),
            session_id=session.id,
            assessment_type_id=assessment_type.id,
            completed_at=session.completed_at or utcnow(),
            scores=scores,
            risk_level=risk_level,
            interpretation=self.build_interpretation(localized, scores, language),
            recommendations=self.build_recommendations(range_recommendations, risk_level, language),
            language=language,
            total_time_spent=session.time_spent,
            answers=session.copy().answers
        )

        await self.store.save(RESULT_RECORD, result.to_dict(), result_record_id(result.id))
        logger.info(
            f"Analyzed session {session.id} ({assessment_type.id}): "
            f"{', '.join(f'{k}={format_score(v.value)} {v.label}' for k, v in scores.items())}; "
            f"risk {risk_level.value}"
        )
        return result

    def build_recommendations(self, range_recommendations: List[str], risk_level: RiskLevel,
                              language: str) -> List[str]:
        """Range advice, then generic advice for the risk level; unique, capped."""
        candidates = list(range_recommendations)
        candidates.extend(self.translator.t_list(f"recommendations.{risk_level.value}", language))

        recommendations: List[str] = []
        for item in candidates:
            if item not in recommendations:
                recommendations.append(item)
        return recommendations[:self.config.max_recommendations]

    def build_interpretation(self, assessment_type: AssessmentType, scores: Dict[str, RuleScore],
                             language: str) -> str:
        """
        Fill the assessment's interpretation template.

        ``{{rule}}`` is the band label, ``{{rule_value}}`` the score and
        ``{{rule_description}}`` the band description. Without a template the
        text lists every rule and ends with the disclaimer.
        """
        templates = assessment_type.interpretation_templates
        template = templates.get(language) or templates.get(self.translator.default_language)

        if template:
            def replace(match):
                key = match.group(1).strip()
                if key in scores:
                    return scores[key].label
                if key.endswith("_value") and key[:-len("_value")] in scores:
                    return str(format_score(scores[key[:-len("_value")]].value))
                if key.endswith("_description") and key[:-len("_description")] in scores:
                    score = scores[key[:-len("_description")]]
                    return score.description or self.translator.t("results.no_description", language=language)
                return match.group(0)

            return PLACEHOLDER.sub(replace, template)

        summary = "; ".join(
            f"{rule_id}: {score.label} ({format_score(score.value)})" for rule_id, score in scores.items()
        )
        text = self.translator.t(
            "results.default_interpretation",
            {"name": assessment_type.name, "summary": summary},
            language
        )
        disclaimer = assessment_type.disclaimer or self.translator.t("results.default_disclaimer", language=language)
        return f"{text} {disclaimer}"

    # History

    async def get_result(self, result_id: str) -> Optional[AssessmentResult]:
        data = await self.store.get(result_record_id(result_id))
        return AssessmentResult.from_dict(data) if data else None

    async def get_all_results(self) -> List[AssessmentResult]:
        """Every stored result, oldest first."""
        results = [AssessmentResult.from_dict(data) for data in await self.store.get_by_type(RESULT_RECORD)]
        return sorted(results, key=lambda r: r.completed_at)

    async def get_results_by_assessment_type(self, assessment_type_id: str) -> List[AssessmentResult]:
        return [r for r in await self.get_all_results() if r.assessment_type_id == assessment_type_id]

    async def get_result_for_session(self, session_id: str) -> Optional[AssessmentResult]:
        for result in await self.get_all_results():
            if result.session_id == session_id:
                return result
        return None

    async def delete_result(self, result_id: str) -> bool:
        deleted = await self.store.delete(result_record_id(result_id))
        if deleted:
            logger.info(f"Deleted result {result_id}")
        return deleted

    async def generate_report(self, result_id: str) -> Optional[Dict[str, Any]]:
        """
        Summarize a result and compare it with the previous result of the
        same assessment type.

        Returns:
            Report dictionary, or None when the result does not exist
        """
        result = await self.get_result(result_id)
        if result is None:
            return None

        earlier = [
            r for r in await self.get_results_by_assessment_type(result.assessment_type_id)
            if r.id != result.id and r.completed_at <= result.completed_at
        ]
        previous = earlier[-1] if earlier else None

        report: Dict[str, Any] = {
            "result_id": result.id,
            "session_id": result.session_id,
            "assessment_type_id": result.assessment_type_id,
            "completed_at": result.completed_at.isoformat(),
            "risk_level": result.risk_level.value,
            "scores": {
                rule_id: {
                    "value": score.value,
                    "label": score.label,
                    "risk_level": score.risk_level.value if score.risk_level else None,
                }
                for rule_id, score in result.scores.items()
            },
            "interpretation": result.interpretation,
            "recommendations": list(result.recommendations),
            "previous_result_id": previous.id if previous else None,
            "comparison": {},
            "trend": None,
        }

        if previous is None:
            return report

        threshold = self.config.trend_threshold
        for rule_id, score in result.scores.items():
            before = previous.scores.get(rule_id)
            if before is None:
                continue
            report["comparison"][rule_id] = {
                "previous": before.value,
                "current": score.value,
                "change": score.value - before.value,
                "trend": score_trend(before.value, score.value, threshold),
            }

        if report["comparison"]:
            report["trend"] = next(iter(report["comparison"].values()))["trend"]
        return report

    async def get_statistics(self) -> Dict[str, Any]:
        """Counts per assessment type, average score per rule and risk distribution."""
        results = await self.get_all_results()

        counts: Dict[str, int] = defaultdict(int)
        totals: Dict[str, Dict[str, List[float]]] = defaultdict(lambda: defaultdict(list))
        risk_distribution = {level.value: 0 for level in RiskLevel}

        for result in results:
            counts[result.assessment_type_id] += 1
            risk_distribution[result.risk_level.value] += 1
            for rule_id, score in result.scores.items():
                totals[result.assessment_type_id][rule_id].append(score.value)

        return {
            "total_results": len(results),
            "by_assessment_type": dict(counts),
            "average_scores": {
                type_id: {rule_id: sum(values) / len(values) for rule_id, values in rules.items()}
                for type_id, rules in totals.items()
            },
            "risk_distribution": risk_distribution,
        }

    async def export_results(self) -> str:
        """All results as a JSON array."""
        return json.dumps([r.to_dict() for r in await self.get_all_results()], ensure_ascii=False)

    async def import_results(self, payload: str) -> int:
        """
        Store results from an ``export_results`` payload.

        Entries that do not parse as results are skipped with a warning.

        Returns:
            Number of results stored

        Raises:
            ValueError: If the payload is not a JSON array
        """
        entries = json.loads(payload)
        if not isinstance(entries, list):
            raise ValueError("Result import expects a JSON array")

        imported = 0
        for entry in entries:
            try:
                result = AssessmentResult.from_dict(entry)
            except (TypeError, ValueError, KeyError, AttributeError) as e:
                logger.warning(f"Skipping invalid result entry: {e}")
                continue
            await self.store.save(RESULT_RECORD, result.to_dict(), result_record_id(result.id))
            imported += 1

        logger.info(f"Imported {imported} of {len(entries)} results")
        return imported
