"""
Question Bank

Holds the assessment definitions. Definitions are read from YAML files once,
checked for structural problems (duplicate ids, dangling question references,
overlapping or gapped score ranges) and are read-only afterwards.
"""

import logging
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union

import yaml

from selfassess.assessments.models import (
    AssessmentCategory,
    AssessmentType,
    Question,
    QuestionType,
)
from selfassess.common.error_handling import AssessmentDefinitionError, InitializationError

logger = logging.getLogger(__name__)

DEFINITIONS_DIR = Path(__file__).parent / "definitions"

# Largest gap allowed between one range's max and the next range's min
MAX_RANGE_GAP = 1


def validate_definition(assessment_type: AssessmentType) -> List[str]:
    """
    Check an assessment definition for structural problems.

    Args:
        assessment_type: Definition to check

    Returns:
        Human-readable problems; empty when the definition is sound
    """
    problems: List[str] = []

    if not assessment_type.questions:
        problems.append("no questions defined")

    seen_questions = set()
    for question in assessment_type.questions:
        if question.id in seen_questions:
            problems.append(f"duplicate question id {question.id}")
        seen_questions.add(question.id)

        if question.is_choice:
            option_ids = question.constraints.option_ids
            if not option_ids:
                problems.append(f"choice question {question.id} has no options")
            if len(set(option_ids)) != len(option_ids):
                problems.append(f"question {question.id} has duplicate option ids")

        if question.type == QuestionType.MULTIPLE_CHOICE:
            low = question.constraints.min_selections
            high = question.constraints.max_selections
            if low is not None and high is not None and low > high:
                problems.append(f"question {question.id} has min_selections above max_selections")
            if high is not None and high > len(question.constraints.options):
                problems.append(f"question {question.id} allows more selections than options")

    seen_rules = set()
    for rule in assessment_type.scoring_rules:
        if rule.id in seen_rules:
            problems.append(f"duplicate scoring rule id {rule.id}")
        seen_rules.add(rule.id)

        for question_id in rule.question_ids:
            if question_id not in seen_questions:
                problems.append(f"rule {rule.id} references unknown question {question_id}")
        for question_id in rule.weights:
            if question_id not in rule.question_ids:
                problems.append(f"rule {rule.id} weights question {question_id} it does not score")

        if not rule.ranges:
            problems.append(f"rule {rule.id} has no score ranges")
            continue

        ordered = sorted(rule.ranges, key=lambda r: r.min)
        for previous, current in zip(ordered, ordered[1:]):
            if current.min <= previous.max:
                problems.append(
                    f"rule {rule.id} ranges '{previous.label}' and '{current.label}' overlap"
                )
            elif current.min - previous.max > MAX_RANGE_GAP:
                problems.append(
                    f"rule {rule.id} has a gap between '{previous.label}' and '{current.label}'"
                )

    return problems


class QuestionBank:
    """
    Provider of assessment definitions.

    Construct, ``await initialize()``, then use the synchronous accessors.
    Definitions passed to the constructor are registered in addition to the
    YAML files found in ``definitions_path``.
    """

    def __init__(
        self,
        definitions_path: Optional[Union[str, Path]] = None,
        assessment_types: Optional[Iterable[AssessmentType]] = None,
        load_bundled: bool = True
    ):
        """
        Initialize the question bank.

        Args:
            definitions_path: Directory of ``*.yaml`` definitions; the bundled
                definitions directory when omitted
            assessment_types: Extra definitions to register
            load_bundled: Whether to read YAML files at all
        """
        self._definitions_path = Path(definitions_path) if definitions_path else DEFINITIONS_DIR
        self._pending = list(assessment_types or [])
        self._load_bundled = load_bundled
        self._types: Dict[str, AssessmentType] = {}
        self._initialized = False

    async def initialize(self) -> None:
        """
        Load and validate every definition.

        Raises:
            InitializationError: If a file cannot be read or parsed
            AssessmentDefinitionError: If a definition fails validation
        """
        if self._initialized:
            return

        if self._load_bundled:
            for assessment_type in self._load_directory(self._definitions_path):
                self.register(assessment_type)
        for assessment_type in self._pending:
            self.register(assessment_type)
        self._pending = []

        self._initialized = True
        logger.info(f"Question bank loaded {len(self._types)} assessment types: {sorted(self._types)}")

    def _load_directory(self, directory: Path) -> List[AssessmentType]:
        if not directory.is_dir():
            raise InitializationError("question bank", f"Definitions directory not found: {directory}")

        loaded = []
        for path in sorted(directory.glob("*.yaml")):
            try:
                with open(path, "r", encoding="utf-8") as f:
                    data = yaml.safe_load(f)
                loaded.append(AssessmentType.from_dict(data))
            except (OSError, yaml.YAMLError, ValueError, TypeError, KeyError) as e:
                raise InitializationError("question bank", f"Cannot load definition {path.name}: {e}", cause=e)
            logger.debug(f"Loaded assessment definition from {path.name}")
        return loaded

    def register(self, assessment_type: AssessmentType) -> None:
        """
        Validate and add a definition, replacing one with the same id.

        Raises:
            AssessmentDefinitionError: If the definition fails validation
        """
        problems = validate_definition(assessment_type)
        if problems:
            raise AssessmentDefinitionError(assessment_type.id, problems)
        if assessment_type.id in self._types:
            logger.warning(f"Replacing assessment definition {assessment_type.id}")
        self._types[assessment_type.id] = assessment_type

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    def _require_initialized(self) -> None:
        if not self._initialized:
            raise InitializationError("question bank", "Question bank used before initialize()")

    def get_assessment_type(self, assessment_type_id: str) -> Optional[AssessmentType]:
        self._require_initialized()
        return self._types.get(assessment_type_id)

    def get_assessment_types(self) -> List[AssessmentType]:
        self._require_initialized()
        return list(self._types.values())

    def get_assessment_types_by_category(self, category: Union[str, AssessmentCategory]) -> List[AssessmentType]:
        self._require_initialized()
        category = AssessmentCategory(category) if isinstance(category, str) else category
        return [t for t in self._types.values() if t.category == category]

    def get_localized_assessment_type(self, assessment_type_id: str, language: str) -> Optional[AssessmentType]:
        """Definition with display text in ``language``; base text when untranslated."""
        assessment_type = self.get_assessment_type(assessment_type_id)
        if assessment_type is None:
            return None
        return assessment_type.localized(language)

    def get_question(self, assessment_type_id: str, question_id: str) -> Optional[Question]:
        assessment_type = self.get_assessment_type(assessment_type_id)
        if assessment_type is None:
            return None
        return assessment_type.get_question(question_id)
