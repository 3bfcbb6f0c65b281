"""
Assessment Models

This module defines the core data models of the assessment engine: the
immutable assessment definitions (questions, scoring rules, score ranges) and
the mutable session and immutable result records built from them.

Questions are a tagged union: ``Question.type`` selects exactly one
constraint record (choice, scale, text, number or date).
"""

import uuid
import enum
import datetime
import dataclasses
from typing import Any, Dict, Iterable, List, Optional, Union
from dataclasses import dataclass, field

from selfassess.common.serialization import SerializableMixin, parse_datetime, utcnow


class QuestionType(enum.Enum):
    """Answer formats supported by the engine."""
    SINGLE_CHOICE = "single_choice"
    MULTIPLE_CHOICE = "multiple_choice"
    SCALE = "scale"
    TEXT = "text"
    NUMBER = "number"
    DATE = "date"


class RiskLevel(enum.Enum):
    """Ordinal severity attached to a score range."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def severity(self) -> int:
        return _RISK_SEVERITY[self]

    @classmethod
    def highest(cls, levels: Iterable[Optional['RiskLevel']]) -> Optional['RiskLevel']:
        """Return the most severe level, ignoring None; None when empty."""
        present = [level for level in levels if level is not None]
        if not present:
            return None
        return max(present, key=lambda level: level.severity)


_RISK_SEVERITY = {RiskLevel.LOW: 1, RiskLevel.MEDIUM: 2, RiskLevel.HIGH: 3}


class SessionStatus(enum.Enum):
    """Status of an assessment session."""
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"
    ABANDONED = "abandoned"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionStatus.COMPLETED, SessionStatus.ABANDONED)


class CalculationMethod(enum.Enum):
    """How a scoring rule reduces answers to a number."""
    SUM = "sum"
    AVERAGE = "average"
    WEIGHTED_SUM = "weighted_sum"
    CUSTOM = "custom"


class AssessmentCategory(enum.Enum):
    """Grouping used when listing assessments."""
    MENTAL_HEALTH = "mental_health"
    PERSONALITY = "personality"
    STRESS = "stress"
    MOOD = "mood"


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


# Question constraints

@dataclass
class QuestionOption(SerializableMixin):
    """A selectable option of a choice question."""

    __serializable_fields__ = ["id", "text", "value", "description"]
    __optional_fields__ = ["description"]

    id: str
    text: str
    value: float
    description: Optional[str] = None

    def __post_init__(self):
        if not self.id:
            raise ValueError("Option id is required")
        if not _is_number(self.value):
            raise ValueError(f"Option {self.id} must have a numeric value, got {self.value!r}")


@dataclass
class ChoiceConstraints(SerializableMixin):
    """Options (and selection bounds for multiple choice)."""

    __serializable_fields__ = ["options", "min_selections", "max_selections"]
    __optional_fields__ = ["min_selections", "max_selections"]

    options: List[QuestionOption] = field(default_factory=list)
    min_selections: Optional[int] = None
    max_selections: Optional[int] = None

    def __post_init__(self):
        self.options = [
            option if isinstance(option, QuestionOption) else QuestionOption.from_dict(option)
            for option in self.options
        ]

    @property
    def option_ids(self) -> List[str]:
        return [option.id for option in self.options]

    def get_option(self, option_id: Any) -> Optional[QuestionOption]:
        """Option with this id; raw values are not matched."""
        for option in self.options:
            if option.id == option_id:
                return option
        return None

    def find_option(self, value: Any) -> Optional[QuestionOption]:
        """
        Resolve a submitted value to an option.

        Matches an option id first, then an option's raw numeric value.
        """
        for option in self.options:
            if option.id == value:
                return option
        if _is_number(value):
            for option in self.options:
                if option.value == value:
                    return option
        return None


@dataclass
class ScaleConstraints(SerializableMixin):
    """Numeric scale bounds, step and end labels."""

    __serializable_fields__ = ["scale_min", "scale_max", "scale_step", "labels"]
    __optional_fields__ = ["scale_step", "labels"]

    scale_min: float
    scale_max: float
    scale_step: Optional[float] = None
    labels: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self):
        if self.scale_min > self.scale_max:
            raise ValueError(f"scale_min {self.scale_min} exceeds scale_max {self.scale_max}")
        if self.scale_step is not None and self.scale_step <= 0:
            raise ValueError(f"scale_step must be positive, got {self.scale_step}")


@dataclass
class TextConstraints(SerializableMixin):
    """Length bounds and an optional regular expression."""

    __serializable_fields__ = ["min_length", "max_length", "pattern", "pattern_message"]
    __optional_fields__ = __serializable_fields__

    min_length: Optional[int] = None
    max_length: Optional[int] = None
    pattern: Optional[str] = None
    pattern_message: Optional[str] = None


@dataclass
class NumberConstraints(SerializableMixin):
    """Numeric bounds and an integer flag."""

    __serializable_fields__ = ["min_value", "max_value", "integer_only"]
    __optional_fields__ = __serializable_fields__

    min_value: Optional[float] = None
    max_value: Optional[float] = None
    integer_only: bool = False


@dataclass
class DateConstraints(SerializableMixin):
    """Inclusive ISO date bounds."""

    __serializable_fields__ = ["min_date", "max_date"]
    __optional_fields__ = __serializable_fields__

    min_date: Optional[str] = None
    max_date: Optional[str] = None


QuestionConstraints = Union[
    ChoiceConstraints, ScaleConstraints, TextConstraints, NumberConstraints, DateConstraints
]

CONSTRAINTS_BY_TYPE = {
    QuestionType.SINGLE_CHOICE: ChoiceConstraints,
    QuestionType.MULTIPLE_CHOICE: ChoiceConstraints,
    QuestionType.SCALE: ScaleConstraints,
    QuestionType.TEXT: TextConstraints,
    QuestionType.NUMBER: NumberConstraints,
    QuestionType.DATE: DateConstraints,
}


@dataclass
class QuestionTranslation(SerializableMixin):
    """Per-language overrides for a question's display text."""

    __serializable_fields__ = ["text", "description", "options", "scale_labels"]
    __optional_fields__ = __serializable_fields__

    text: Optional[str] = None
    description: Optional[str] = None
    options: Dict[str, str] = field(default_factory=dict)
    scale_labels: Dict[str, str] = field(default_factory=dict)


@dataclass
class Question(SerializableMixin):
    """
    A single question of an assessment.

    ``constraints`` must be the record class registered for ``type`` in
    CONSTRAINTS_BY_TYPE; construction fails otherwise.
    """

    __serializable_fields__ = [
        "id", "text", "type", "constraints", "required", "weight",
        "description", "translations"
    ]
    __optional_fields__ = ["constraints", "required", "weight", "description", "translations"]

    id: str
    text: str
    type: QuestionType
    constraints: Optional[QuestionConstraints] = None
    required: bool = True
    weight: Optional[float] = None
    description: Optional[str] = None
    translations: Dict[str, QuestionTranslation] = field(default_factory=dict)

    def __post_init__(self):
        if not self.id:
            raise ValueError("Question id is required")
        if not self.text:
            raise ValueError(f"Question {self.id} has no text")

        if isinstance(self.type, str):
            try:
                self.type = QuestionType(self.type)
            except ValueError:
                raise ValueError(f"Question {self.id} has invalid type: {self.type}")

        expected = CONSTRAINTS_BY_TYPE[self.type]
        if self.constraints is None:
            self.constraints = {}
        if isinstance(self.constraints, dict):
            self.constraints = expected.from_dict(self.constraints)
        if not isinstance(self.constraints, expected):
            raise ValueError(
                f"Question {self.id} of type {self.type.value} needs {expected.__name__}, "
                f"got {type(self.constraints).__name__}"
            )

        self.translations = {
            language: t if isinstance(t, QuestionTranslation) else QuestionTranslation.from_dict(t)
            for language, t in (self.translations or {}).items()
        }

    @property
    def is_choice(self) -> bool:
        return self.type in (QuestionType.SINGLE_CHOICE, QuestionType.MULTIPLE_CHOICE)

    @property
    def options(self) -> List[QuestionOption]:
        return self.constraints.options if self.is_choice else []

    def localized(self, language: str) -> 'Question':
        """
        Return a copy with the display text for ``language``.

        Languages without a translation get the base question unchanged.
        """
        translation = self.translations.get(language)
        if translation is None:
            return self

        constraints = self.constraints
        if self.is_choice and translation.options:
            constraints = dataclasses.replace(
                constraints,
                options=[
                    dataclasses.replace(option, text=translation.options.get(option.id, option.text))
                    for option in constraints.options
                ]
            )
        elif self.type == QuestionType.SCALE and translation.scale_labels:
            constraints = dataclasses.replace(
                constraints, labels={**constraints.labels, **translation.scale_labels}
            )

        return dataclasses.replace(
            self,
            text=translation.text or self.text,
            description=translation.description or self.description,
            constraints=constraints
        )


# Scoring

@dataclass
class RangeTranslation(SerializableMixin):
    """Per-language overrides for a score range."""

    __serializable_fields__ = ["label", "description", "recommendations"]
    __optional_fields__ = __serializable_fields__

    label: Optional[str] = None
    description: Optional[str] = None
    recommendations: Optional[List[str]] = None


@dataclass
class ScoreRange(SerializableMixin):
    """An inclusive score band with its interpretation."""

    __serializable_fields__ = [
        "min", "max", "label", "description", "risk_level", "recommendations", "translations"
    ]
    __optional_fields__ = ["description", "risk_level", "recommendations", "translations"]

    min: float
    max: float
    label: str
    description: str = ""
    risk_level: Optional[RiskLevel] = None
    recommendations: List[str] = field(default_factory=list)
    translations: Dict[str, RangeTranslation] = field(default_factory=dict)

    def __post_init__(self):
        if isinstance(self.risk_level, str):
            self.risk_level = RiskLevel(self.risk_level)
        if self.min > self.max:
            raise ValueError(f"Range {self.label} has min {self.min} above max {self.max}")
        self.translations = {
            language: t if isinstance(t, RangeTranslation) else RangeTranslation.from_dict(t)
            for language, t in (self.translations or {}).items()
        }

    def contains(self, score: float) -> bool:
        return self.min <= score <= self.max

    def localized(self, language: str) -> 'ScoreRange':
        translation = self.translations.get(language)
        if translation is None:
            return self
        return dataclasses.replace(
            self,
            label=translation.label or self.label,
            description=translation.description or self.description,
            recommendations=list(translation.recommendations or self.recommendations)
        )


@dataclass
class ScoringRule(SerializableMixin):
    """A named formula reducing a subset of answers to a score and a band."""

    __serializable_fields__ = ["id", "name", "method", "question_ids", "ranges", "weights", "formula"]
    __optional_fields__ = ["weights", "formula"]

    id: str
    name: str
    method: CalculationMethod
    question_ids: List[str]
    ranges: List[ScoreRange]
    weights: Dict[str, float] = field(default_factory=dict)
    formula: Optional[str] = None

    def __post_init__(self):
        if isinstance(self.method, str):
            try:
                self.method = CalculationMethod(self.method)
            except ValueError:
                raise ValueError(f"Scoring rule {self.id} has invalid method: {self.method}")
        if self.method == CalculationMethod.CUSTOM and not self.formula:
            raise ValueError(f"Scoring rule {self.id} uses a custom method without a formula")
        self.ranges = [
            r if isinstance(r, ScoreRange) else ScoreRange.from_dict(r) for r in self.ranges
        ]
        self.weights = dict(self.weights or {})

    def find_range(self, score: float) -> Optional[ScoreRange]:
        for score_range in self.ranges:
            if score_range.contains(score):
                return score_range
        return None


@dataclass
class AssessmentTypeTranslation(SerializableMixin):
    """Per-language overrides for an assessment's descriptive text."""

    __serializable_fields__ = ["name", "description", "instructions", "disclaimer"]
    __optional_fields__ = __serializable_fields__

    name: Optional[str] = None
    description: Optional[str] = None
    instructions: Optional[str] = None
    disclaimer: Optional[str] = None


@dataclass
class AssessmentType(SerializableMixin):
    """
    The reusable definition of a questionnaire.

    Loaded once by the QuestionBank and treated as read-only afterwards;
    ``localized`` returns copies rather than mutating.
    """

    __serializable_fields__ = [
        "id", "name", "description", "category", "questions", "scoring_rules",
        "estimated_duration", "instructions", "disclaimer", "version",
        "created_at", "updated_at", "translations", "interpretation_templates"
    ]
    __optional_fields__ = [
        "estimated_duration", "instructions", "disclaimer", "version",
        "created_at", "updated_at", "translations", "interpretation_templates"
    ]

    id: str
    name: str
    description: str
    category: AssessmentCategory
    questions: List[Question]
    scoring_rules: List[ScoringRule]
    estimated_duration: int = 5
    instructions: str = ""
    disclaimer: str = ""
    version: str = "1.0"
    created_at: datetime.datetime = field(default_factory=utcnow)
    updated_at: datetime.datetime = field(default_factory=utcnow)
    translations: Dict[str, AssessmentTypeTranslation] = field(default_factory=dict)
    interpretation_templates: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self):
        if isinstance(self.category, str):
            try:
                self.category = AssessmentCategory(self.category)
            except ValueError:
                raise ValueError(f"Assessment {self.id} has invalid category: {self.category}")
        self.questions = [q if isinstance(q, Question) else Question.from_dict(q) for q in self.questions]
        self.scoring_rules = [
            r if isinstance(r, ScoringRule) else ScoringRule.from_dict(r) for r in self.scoring_rules
        ]
        self.created_at = parse_datetime(self.created_at)
        self.updated_at = parse_datetime(self.updated_at)
        self.translations = {
            language: t if isinstance(t, AssessmentTypeTranslation) else AssessmentTypeTranslation.from_dict(t)
            for language, t in (self.translations or {}).items()
        }
        self.interpretation_templates = dict(self.interpretation_templates or {})

    def get_question(self, question_id: str) -> Optional[Question]:
        for question in self.questions:
            if question.id == question_id:
                return question
        return None

    def question_index(self, question_id: str) -> int:
        """Position of a question in the assessment order, or -1."""
        for index, question in enumerate(self.questions):
            if question.id == question_id:
                return index
        return -1

    @property
    def required_question_ids(self) -> List[str]:
        return [q.id for q in self.questions if q.required]

    def localized(self, language: str) -> 'AssessmentType':
        """
        Return a copy with names, questions and ranges in ``language``.

        Missing translations fall back to the base (English) text.
        """
        translation = self.translations.get(language) or AssessmentTypeTranslation()
        return dataclasses.replace(
            self,
            name=translation.name or self.name,
            description=translation.description or self.description,
            instructions=translation.instructions or self.instructions,
            disclaimer=translation.disclaimer or self.disclaimer,
            questions=[q.localized(language) for q in self.questions],
            scoring_rules=[
                dataclasses.replace(rule, ranges=[r.localized(language) for r in rule.ranges])
                for rule in self.scoring_rules
            ]
        )


# Sessions and results

@dataclass
class AssessmentAnswer(SerializableMixin):
    """A user's answer to one question."""

    __serializable_fields__ = ["question_id", "value", "answered_at"]
    __optional_fields__ = ["answered_at"]

    question_id: str
    value: Any
    answered_at: datetime.datetime = field(default_factory=utcnow)

    def __post_init__(self):
        self.answered_at = parse_datetime(self.answered_at)


@dataclass
class AssessmentSession(SerializableMixin):
    """
    One user's run through an assessment.

    Tracks answers, the position pointer, status and accumulated time.
    """

    __serializable_fields__ = [
        "id", "assessment_type_id", "started_at", "current_question_index", "answers",
        "status", "language", "time_spent", "last_activity_at", "completed_at"
    ]
    __optional_fields__ = [
        "started_at", "current_question_index", "answers", "status", "language",
        "time_spent", "last_activity_at", "completed_at"
    ]

    id: str
    assessment_type_id: str
    started_at: datetime.datetime = field(default_factory=utcnow)
    current_question_index: int = 0
    answers: List[AssessmentAnswer] = field(default_factory=list)
    status: SessionStatus = SessionStatus.ACTIVE
    language: str = "en"
    time_spent: float = 0.0
    last_activity_at: Optional[datetime.datetime] = None
    completed_at: Optional[datetime.datetime] = None

    def __post_init__(self):
        if not self.id:
            self.id = str(uuid.uuid4())
        if not self.assessment_type_id:
            raise ValueError("Assessment type id is required")
        if isinstance(self.status, str):
            try:
                self.status = SessionStatus(self.status)
            except ValueError:
                raise ValueError(f"Invalid session status: {self.status}")
        self.answers = [
            a if isinstance(a, AssessmentAnswer) else AssessmentAnswer.from_dict(a) for a in self.answers
        ]
        self.started_at = parse_datetime(self.started_at)
        self.last_activity_at = parse_datetime(self.last_activity_at) or self.started_at
        self.completed_at = parse_datetime(self.completed_at)
        if self.current_question_index < 0:
            self.current_question_index = 0

    @classmethod
    def create(cls, assessment_type_id: str, language: str = "en") -> 'AssessmentSession':
        now = utcnow()
        return cls(
            id=str(uuid.uuid4()),
            assessment_type_id=assessment_type_id,
            started_at=now,
            language=language,
            last_activity_at=now
        )

    def get_answer(self, question_id: str) -> Optional[AssessmentAnswer]:
        for answer in self.answers:
            if answer.question_id == question_id:
                return answer
        return None

    @property
    def answered_question_ids(self) -> List[str]:
        return [answer.question_id for answer in self.answers]

    def upsert_answer(self, question_id: str, value: Any,
                      answered_at: Optional[datetime.datetime] = None) -> bool:
        """
        Record an answer, replacing any earlier answer to the same question.

        Returns:
            True if an existing answer was replaced
        """
        answer = AssessmentAnswer(question_id=question_id, value=value,
                                  answered_at=answered_at or utcnow())
        for index, existing in enumerate(self.answers):
            if existing.question_id == question_id:
                self.answers[index] = answer
                return True
        self.answers.append(answer)
        return False

    def touch(self, now: Optional[datetime.datetime] = None) -> None:
        """Add time since the last activity (when active) and stamp activity."""
        now = now or utcnow()
        if self.status == SessionStatus.ACTIVE and self.last_activity_at is not None:
            elapsed = (now - self.last_activity_at).total_seconds()
            if elapsed > 0:
                self.time_spent += elapsed
        self.last_activity_at = now

    def copy(self) -> 'AssessmentSession':
        return AssessmentSession.from_dict(self.to_dict())


@dataclass
class RuleScore(SerializableMixin):
    """Score of one scoring rule and the band it fell into."""

    __serializable_fields__ = ["value", "label", "description", "risk_level"]
    __optional_fields__ = ["description", "risk_level"]

    value: float
    label: str
    description: str = ""
    risk_level: Optional[RiskLevel] = None

    def __post_init__(self):
        if isinstance(self.risk_level, str):
            self.risk_level = RiskLevel(self.risk_level)


@dataclass
class AssessmentResult(SerializableMixin):
    """The immutable outcome of scoring a completed session."""

    __serializable_fields__ = [
        "id", "session_id", "assessment_type_id", "completed_at", "scores",
        "interpretation", "recommendations", "risk_level", "language",
        "total_time_spent", "answers"
    ]
    __optional_fields__ = ["interpretation", "recommendations", "language", "total_time_spent", "answers"]

    id: str
    session_id: str
    assessment_type_id: str
    completed_at: datetime.datetime
    scores: Dict[str, RuleScore]
    risk_level: RiskLevel
    interpretation: str = ""
    recommendations: List[str] = field(default_factory=list)
    language: str = "en"
    total_time_spent: float = 0.0
    answers: List[AssessmentAnswer] = field(default_factory=list)

    def __post_init__(self):
        if not self.id:
            self.id = str(uuid.uuid4())
        if isinstance(self.risk_level, str):
            self.risk_level = RiskLevel(self.risk_level)
        self.completed_at = parse_datetime(self.completed_at)
        self.scores = {
            rule_id: s if isinstance(s, RuleScore) else RuleScore.from_dict(s)
            for rule_id, s in self.scores.items()
        }
        self.answers = [
            a if isinstance(a, AssessmentAnswer) else AssessmentAnswer.from_dict(a) for a in self.answers
        ]


__all__ = [
    "QuestionType", "RiskLevel", "SessionStatus", "CalculationMethod", "AssessmentCategory",
    "QuestionOption", "ChoiceConstraints", "ScaleConstraints", "TextConstraints",
    "NumberConstraints", "DateConstraints", "QuestionConstraints", "CONSTRAINTS_BY_TYPE",
    "QuestionTranslation", "Question", "RangeTranslation", "ScoreRange", "ScoringRule",
    "AssessmentTypeTranslation", "AssessmentType", "AssessmentAnswer", "AssessmentSession",
    "RuleScore", "AssessmentResult",
]
