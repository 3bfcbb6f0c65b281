"""
Answer Validation

Per-question-type rules that check a submitted answer against the question's
constraints. Rules are pure and deterministic: the same (value, question)
pair always yields the same errors, and nothing is mutated.

The AnswerValidator runs the applicable rules in priority order, localizes
messages through an optional translator and supports custom rules.
"""

import re
import math
import logging
import datetime
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from selfassess.assessments.models import Question, QuestionType

logger = logging.getLogger(__name__)

# English fallback messages used when no translator is configured
DEFAULT_MESSAGES: Dict[str, str] = {
    "FIELD_REQUIRED": "This question is required",
    "SINGLE_CHOICE_INVALID_OPTION": "Please select one of the available options",
    "SINGLE_CHOICE_NO_OPTIONS": "This question has no options to choose from",
    "MULTIPLE_CHOICE_INVALID_FORMAT": "Please select one or more options",
    "MULTIPLE_CHOICE_NO_OPTIONS": "This question has no options to choose from",
    "MULTIPLE_CHOICE_INVALID_OPTIONS": "Some selected options are not valid: {invalid}",
    "MULTIPLE_CHOICE_DUPLICATE_OPTIONS": "Each option can be selected only once: {duplicates}",
    "MULTIPLE_CHOICE_MIN_SELECTIONS": "Please select at least {min} option(s)",
    "MULTIPLE_CHOICE_MAX_SELECTIONS": "Please select no more than {max} option(s)",
    "SCALE_INVALID_NUMBER": "Please choose a value on the scale",
    "SCALE_BELOW_MIN": "Value must be at least {min}",
    "SCALE_ABOVE_MAX": "Value must be at most {max}",
    "SCALE_INVALID_STEP": "Value must move in steps of {step}",
    "TEXT_INVALID_TYPE": "Please enter text",
    "TEXT_TOO_SHORT": "Please enter at least {min} characters",
    "TEXT_TOO_LONG": "Please enter no more than {max} characters",
    "TEXT_PATTERN_MISMATCH": "The text does not have the expected format",
    "NUMBER_INVALID": "Please enter a valid number",
    "NUMBER_TOO_SMALL": "Number must be at least {min}",
    "NUMBER_TOO_LARGE": "Number must be at most {max}",
    "NUMBER_NOT_INTEGER": "Please enter a whole number",
    "DATE_INVALID": "Please enter a valid date",
    "DATE_TOO_EARLY": "Date must be on or after {min}",
    "DATE_TOO_LATE": "Date must be on or before {max}",
    "QUESTION_NOT_FOUND": "This question does not belong to the assessment",
    "VALIDATION_RULE_ERROR": "The answer could not be checked",
}

STEP_TOLERANCE = 1e-9


@dataclass
class ValidationError:
    """A single validation failure."""
    code: str
    message: str
    question_id: str
    params: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "question_id": self.question_id}


@dataclass
class ValidationResult:
    """Outcome of validating one answer."""
    is_valid: bool
    errors: List[ValidationError] = field(default_factory=list)
    warnings: List[ValidationError] = field(default_factory=list)

    def __bool__(self) -> bool:
        return self.is_valid

    @property
    def error_codes(self) -> List[str]:
        return [error.code for error in self.errors]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_valid": self.is_valid,
            "errors": [e.to_dict() for e in self.errors],
            "warnings": [w.to_dict() for w in self.warnings],
        }


def is_empty(value: Any) -> bool:
    """None, empty string and empty list count as no answer."""
    return value is None or value == "" or (isinstance(value, (list, tuple)) and len(value) == 0)


def to_number(value: Any) -> Optional[float]:
    """Parse an int, float or numeric string; booleans and non-finite values are rejected."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str) and value.strip():
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def to_date(value: Any) -> Optional[datetime.date]:
    """Parse a date, datetime or ISO string into a date."""
    if isinstance(value, datetime.datetime):
        return value.date()
    if isinstance(value, datetime.date):
        return value
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    try:
        return datetime.date.fromisoformat(text)
    except ValueError:
        pass
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.datetime.fromisoformat(text).date()
    except ValueError:
        return None


def _format_number(number: float) -> Any:
    return int(number) if float(number).is_integer() else number


class ValidationRule(ABC):
    """
    Base class for validation rules.

    ``question_types`` limits the rule to some question types (None applies
    it to all); lower ``priority`` runs first.
    """

    rule_id: str = "rule"
    priority: int = 100
    question_types: Optional[Tuple[QuestionType, ...]] = None
    severity: str = "error"

    def applies_to(self, question: Question) -> bool:
        return self.question_types is None or question.type in self.question_types

    @abstractmethod
    def validate(self, value: Any, question: Question) -> Optional[ValidationError]:
        """Return a ValidationError, or None when the value passes."""
        pass

    @staticmethod
    def error(question: Question, code: str, **params) -> ValidationError:
        template = DEFAULT_MESSAGES.get(code, code)
        return ValidationError(
            code=code,
            message=template.format(**params) if params else template,
            question_id=question.id,
            params=params
        )


class RequiredFieldRule(ValidationRule):
    """Required questions must have a non-empty answer."""

    rule_id = "required"
    priority = 1

    def validate(self, value: Any, question: Question) -> Optional[ValidationError]:
        if question.required and is_empty(value):
            return self.error(question, "FIELD_REQUIRED")
        return None


class SingleChoiceRule(ValidationRule):
    """The answer must be an option id or an option's raw value."""

    rule_id = "single_choice"
    priority = 10
    question_types = (QuestionType.SINGLE_CHOICE,)

    def validate(self, value: Any, question: Question) -> Optional[ValidationError]:
        if value is None or value == "":
            return None
        if not question.constraints.options:
            return self.error(question, "SINGLE_CHOICE_NO_OPTIONS")
        if question.constraints.find_option(value) is None:
            return self.error(question, "SINGLE_CHOICE_INVALID_OPTION", value=value)
        return None


class MultipleChoiceRule(ValidationRule):
    """
    The answer must be a list of option ids within the selection bounds.

    The minimum defaults to 1 for required questions.
    """

    rule_id = "multiple_choice"
    priority = 10
    question_types = (QuestionType.MULTIPLE_CHOICE,)

    def validate(self, value: Any, question: Question) -> Optional[ValidationError]:
        if value is None:
            return None
        if not isinstance(value, (list, tuple)):
            return self.error(question, "MULTIPLE_CHOICE_INVALID_FORMAT")

        constraints = question.constraints
        if value and not constraints.options:
            return self.error(question, "MULTIPLE_CHOICE_NO_OPTIONS")

        valid_ids = set(constraints.option_ids)
        invalid = [item for item in value if item not in valid_ids]
        if invalid:
            return self.error(
                question, "MULTIPLE_CHOICE_INVALID_OPTIONS", invalid=", ".join(str(i) for i in invalid)
            )

        repeated = sorted({item for item in value if value.count(item) > 1})
        if repeated:
            return self.error(
                question, "MULTIPLE_CHOICE_DUPLICATE_OPTIONS", duplicates=", ".join(repeated)
            )

        min_selections = constraints.min_selections
        if min_selections is None and question.required:
            min_selections = 1
        if min_selections is not None and len(value) < min_selections:
            return self.error(question, "MULTIPLE_CHOICE_MIN_SELECTIONS", min=min_selections)

        if constraints.max_selections is not None and len(value) > constraints.max_selections:
            return self.error(question, "MULTIPLE_CHOICE_MAX_SELECTIONS", max=constraints.max_selections)

        return None


class ScaleRule(ValidationRule):
    """Numeric value inside the scale, aligned to its step."""

    rule_id = "scale"
    priority = 10
    question_types = (QuestionType.SCALE,)

    def validate(self, value: Any, question: Question) -> Optional[ValidationError]:
        if value is None or value == "":
            return None
        number = to_number(value)
        if number is None:
            return self.error(question, "SCALE_INVALID_NUMBER")

        constraints = question.constraints
        if number < constraints.scale_min:
            return self.error(question, "SCALE_BELOW_MIN", min=_format_number(constraints.scale_min))
        if number > constraints.scale_max:
            return self.error(question, "SCALE_ABOVE_MAX", max=_format_number(constraints.scale_max))

        if constraints.scale_step:
            steps = (number - constraints.scale_min) / constraints.scale_step
            if abs(steps - round(steps)) > STEP_TOLERANCE:
                return self.error(question, "SCALE_INVALID_STEP", step=_format_number(constraints.scale_step))
        return None


class TextRule(ValidationRule):
    """String within the length bounds, matching the pattern when set."""

    rule_id = "text"
    priority = 10
    question_types = (QuestionType.TEXT,)

    def validate(self, value: Any, question: Question) -> Optional[ValidationError]:
        if value is None or value == "":
            return None
        if not isinstance(value, str):
            return self.error(question, "TEXT_INVALID_TYPE")

        constraints = question.constraints
        if constraints.min_length is not None and len(value) < constraints.min_length:
            return self.error(question, "TEXT_TOO_SHORT", min=constraints.min_length)
        if constraints.max_length is not None and len(value) > constraints.max_length:
            return self.error(question, "TEXT_TOO_LONG", max=constraints.max_length)

        if constraints.pattern and re.search(constraints.pattern, value) is None:
            error = self.error(question, "TEXT_PATTERN_MISMATCH")
            if constraints.pattern_message:
                error.message = constraints.pattern_message
                error.params["pattern_message"] = constraints.pattern_message
            return error
        return None


class NumberRule(ValidationRule):
    """Number within bounds, whole when the question asks for an integer."""

    rule_id = "number"
    priority = 10
    question_types = (QuestionType.NUMBER,)

    def validate(self, value: Any, question: Question) -> Optional[ValidationError]:
        if value is None or value == "":
            return None
        number = to_number(value)
        if number is None:
            return self.error(question, "NUMBER_INVALID")

        constraints = question.constraints
        if constraints.min_value is not None and number < constraints.min_value:
            return self.error(question, "NUMBER_TOO_SMALL", min=_format_number(constraints.min_value))
        if constraints.max_value is not None and number > constraints.max_value:
            return self.error(question, "NUMBER_TOO_LARGE", max=_format_number(constraints.max_value))
        if constraints.integer_only and not number.is_integer():
            return self.error(question, "NUMBER_NOT_INTEGER")
        return None


class DateRule(ValidationRule):
    """Parseable date within the inclusive date bounds."""

    rule_id = "date"
    priority = 10
    question_types = (QuestionType.DATE,)

    def validate(self, value: Any, question: Question) -> Optional[ValidationError]:
        if value is None or value == "":
            return None
        parsed = to_date(value)
        if parsed is None:
            return self.error(question, "DATE_INVALID")

        constraints = question.constraints
        min_date = to_date(constraints.min_date)
        max_date = to_date(constraints.max_date)
        if min_date is not None and parsed < min_date:
            return self.error(question, "DATE_TOO_EARLY", min=min_date.isoformat())
        if max_date is not None and parsed > max_date:
            return self.error(question, "DATE_TOO_LATE", max=max_date.isoformat())
        return None


class CustomRule(ValidationRule):
    """
    Rule built from a callable.

    ``check(value, question)`` returns an error message or None. ``condition``
    restricts the rule to the questions it returns True for.
    """

    def __init__(
        self,
        rule_id: str,
        code: str,
        check: Callable[[Any, Question], Optional[str]],
        priority: int = 50,
        condition: Optional[Callable[[Question], bool]] = None,
        question_types: Optional[Iterable[QuestionType]] = None,
        severity: str = "error"
    ):
        self.rule_id = rule_id
        self.code = code
        self.check = check
        self.priority = priority
        self.condition = condition
        self.question_types = tuple(question_types) if question_types else None
        self.severity = severity

    def applies_to(self, question: Question) -> bool:
        if not super().applies_to(question):
            return False
        return self.condition is None or bool(self.condition(question))

    def validate(self, value: Any, question: Question) -> Optional[ValidationError]:
        message = self.check(value, question)
        if message is None:
            return None
        return ValidationError(code=self.code, message=message, question_id=question.id)


def default_rules() -> List[ValidationRule]:
    return [
        RequiredFieldRule(),
        SingleChoiceRule(),
        MultipleChoiceRule(),
        ScaleRule(),
        TextRule(),
        NumberRule(),
        DateRule(),
    ]


class AnswerValidator:
    """
    Runs validation rules against answers.

    Args:
        translator: Optional Translator used to localize messages
        rules: Rule set; the built-in rules when omitted
    """

    def __init__(self, translator=None, rules: Optional[Iterable[ValidationRule]] = None):
        self._translator = translator
        self._rules: List[ValidationRule] = list(rules) if rules is not None else default_rules()
        self._sort_rules()

    def _sort_rules(self) -> None:
        self._rules.sort(key=lambda rule: rule.priority)

    @property
    def rules(self) -> List[ValidationRule]:
        return list(self._rules)

    def add_rule(self, rule: ValidationRule) -> None:
        """Add a rule, replacing any rule with the same id."""
        self._rules = [r for r in self._rules if r.rule_id != rule.rule_id]
        self._rules.append(rule)
        self._sort_rules()
        logger.debug(f"Registered validation rule {rule.rule_id} (priority {rule.priority})")

    def remove_rule(self, rule_id: str) -> bool:
        before = len(self._rules)
        self._rules = [r for r in self._rules if r.rule_id != rule_id]
        return len(self._rules) != before

    def _localize(self, error: ValidationError, language: Optional[str]) -> ValidationError:
        if self._translator is None or "pattern_message" in error.params:
            return error
        key = f"validation.{error.code}"
        message = self._translator.t(key, error.params, language)
        if message != key:
            error.message = message
        return error

    def validate_answer(
        self,
        value: Any,
        question: Question,
        language: Optional[str] = None,
        skip_required: bool = False
    ) -> ValidationResult:
        """
        Validate one answer against its question.

        Args:
            value: Submitted value
            question: Question being answered
            language: Language for messages
            skip_required: Skip the required-field rule

        Returns:
            ValidationResult with every failing rule's error
        """
        errors: List[ValidationError] = []
        warnings: List[ValidationError] = []

        for rule in self._rules:
            if skip_required and isinstance(rule, RequiredFieldRule):
                continue
            if not rule.applies_to(question):
                continue
            try:
                error = rule.validate(value, question)
            except Exception as e:
                logger.error(f"Validation rule {rule.rule_id} failed on question {question.id}: {e}")
                error = ValidationRule.error(question, "VALIDATION_RULE_ERROR", rule=rule.rule_id)
            if error is None:
                continue
            error = self._localize(error, language)
            if rule.severity == "warning":
                warnings.append(error)
            else:
                errors.append(error)

        return ValidationResult(is_valid=not errors, errors=errors, warnings=warnings)

    def validate_realtime(self, value: Any, question: Question, language: Optional[str] = None) -> ValidationResult:
        """Validate partial input while the user is still typing; emptiness is not an error."""
        if is_empty(value):
            return ValidationResult(is_valid=True)
        return self.validate_answer(value, question, language, skip_required=True)

    def validate_answers(
        self,
        answers: Mapping[str, Any],
        questions: Iterable[Question],
        language: Optional[str] = None
    ) -> Dict[str, ValidationResult]:
        """
        Validate a batch of answers keyed by question id.

        Required questions absent from ``answers`` fail with FIELD_REQUIRED;
        answers to unknown questions fail with QUESTION_NOT_FOUND.
        """
        by_id = {question.id: question for question in questions}
        results: Dict[str, ValidationResult] = {}

        for question_id, question in by_id.items():
            results[question_id] = self.validate_answer(answers.get(question_id), question, language)

        for question_id in answers:
            if question_id in by_id:
                continue
            message = DEFAULT_MESSAGES["QUESTION_NOT_FOUND"]
            if self._translator is not None:
                message = self._translator.t("validation.QUESTION_NOT_FOUND", language=language)
            results[question_id] = ValidationResult(
                is_valid=False,
                errors=[ValidationError(code="QUESTION_NOT_FOUND", message=message, question_id=question_id)]
            )

        return results

    def get_suggestions(self, error: ValidationError, language: Optional[str] = None) -> List[str]:
        """Hints that help the user fix an error."""
        if self._translator is None:
            return []
        key = f"suggestions.{error.code}"
        suggestion = self._translator.t(key, error.params, language)
        return [] if suggestion == key else [suggestion]
