"""
Scoring

Reduces a session's answers to one number per scoring rule. Choice answers
score their option values, scale and number answers score themselves; text
and date answers carry no score.

Custom rules name a formula in the FormulaRegistry.
"""

import logging
from typing import Any, Callable, Dict, List, Optional

from selfassess.assessments.models import (
    AssessmentSession,
    AssessmentType,
    CalculationMethod,
    Question,
    QuestionType,
    ScoringRule,
)
from selfassess.assessments.validation import to_number
from selfassess.common.error_handling import ScoringError

logger = logging.getLogger(__name__)

Formula = Callable[[Dict[str, float], ScoringRule], float]


class FormulaDefinition:
    """A named custom scoring formula."""

    def __init__(self, name: str, func: Formula, description: Optional[str] = None):
        self.name = name
        self.func = func
        self.description = description or getattr(func, '__doc__', '') or ''

    def __call__(self, values: Dict[str, float], rule: ScoringRule) -> float:
        return float(self.func(values, rule))


class FormulaRegistry:
    """
    Registry of custom scoring formulas.

    A formula receives the numeric values of the rule's answered questions,
    keyed by question id, and the rule itself.
    """

    def __init__(self, include_builtins: bool = True):
        self._formulas: Dict[str, FormulaDefinition] = {}
        if include_builtins:
            self.register("max_item", max_item)
            self.register("count_nonzero", count_nonzero)

    def register(self, name: str, func: Formula, description: Optional[str] = None) -> None:
        if name in self._formulas:
            logger.warning(f"Replacing scoring formula {name}")
        self._formulas[name] = FormulaDefinition(name, func, description)

    def unregister(self, name: str) -> bool:
        return self._formulas.pop(name, None) is not None

    def get(self, name: str) -> Optional[FormulaDefinition]:
        return self._formulas.get(name)

    def names(self) -> List[str]:
        return sorted(self._formulas)

    def __contains__(self, name: str) -> bool:
        return name in self._formulas


def max_item(values: Dict[str, float], rule: ScoringRule) -> float:
    """Highest single item score."""
    return max(values.values()) if values else 0.0


def count_nonzero(values: Dict[str, float], rule: ScoringRule) -> float:
    """Number of items scored above zero."""
    return float(sum(1 for value in values.values() if value > 0))


def numeric_value(question: Question, value: Any) -> Optional[float]:
    """
    Numeric score of one answer, or None when it carries no score.

    Single choice accepts an option id or an option's raw value; multiple
    choice sums the values of the distinct option ids selected.
    """
    if value is None:
        return None

    if question.type == QuestionType.SINGLE_CHOICE:
        option = question.constraints.find_option(value)
        return float(option.value) if option is not None else None

    if question.type == QuestionType.MULTIPLE_CHOICE:
        if not isinstance(value, (list, tuple)):
            return None
        selected = []
        for option_id in value:
            option = question.constraints.get_option(option_id)
            if option is not None and option not in selected:
                selected.append(option)
        return float(sum(option.value for option in selected))

    if question.type in (QuestionType.SCALE, QuestionType.NUMBER):
        return to_number(value)

    return None


def collect_values(rule: ScoringRule, assessment_type: AssessmentType,
                   session: AssessmentSession) -> Dict[str, float]:
    """Numeric values of the rule's answered, scorable questions in rule order."""
    values: Dict[str, float] = {}
    for question_id in rule.question_ids:
        question = assessment_type.get_question(question_id)
        answer = session.get_answer(question_id)
        if question is None or answer is None:
            continue
        number = numeric_value(question, answer.value)
        if number is not None:
            values[question_id] = number
    return values


def calculate_score(
    rule: ScoringRule,
    values: Dict[str, float],
    formulas: Optional[FormulaRegistry] = None,
    assessment_type_id: Optional[str] = None
) -> float:
    """
    Apply a rule's calculation method.

    ``average`` divides by the number of answered questions; questions with
    no numeric answer are left out of the denominator.

    Raises:
        ScoringError: If a custom rule names an unregistered formula
    """
    if rule.method == CalculationMethod.SUM:
        return float(sum(values.values()))

    if rule.method == CalculationMethod.AVERAGE:
        missing = [qid for qid in rule.question_ids if qid not in values]
        if missing:
            logger.warning(
                f"Rule {rule.id} averages {len(values)} of {len(rule.question_ids)} questions; "
                f"unanswered: {missing}"
            )
        if not values:
            return 0.0
        return sum(values.values()) / len(values)

    if rule.method == CalculationMethod.WEIGHTED_SUM:
        return float(sum(value * rule.weights.get(qid, 1.0) for qid, value in values.items()))

    formula = formulas.get(rule.formula) if formulas is not None else None
    if formula is None:
        raise ScoringError(rule.id, rule.formula, assessment_type_id=assessment_type_id)
    return formula(values, rule)
