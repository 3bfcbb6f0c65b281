"""
Engine Factory

Builds a ready AssessmentEngine from an AppConfig. Components are created
leaf first (translator, question bank, store, validator, analyzer, engine)
and initialized in the same order.
"""

import logging
from typing import Optional

from selfassess.assessments.analyzer import ResultsAnalyzer
from selfassess.assessments.engine import AssessmentEngine
from selfassess.assessments.question_bank import QuestionBank
from selfassess.assessments.scoring import FormulaRegistry
from selfassess.assessments.validation import AnswerValidator
from selfassess.common.config import AppConfig, load_config
from selfassess.common.logger import configure_from_config
from selfassess.i18n.translator import Translator
from selfassess.storage.store import SessionStore

logger = logging.getLogger(__name__)


async def create_assessment_engine(
    config: Optional[AppConfig] = None,
    formulas: Optional[FormulaRegistry] = None,
    configure_logging: bool = False
) -> AssessmentEngine:
    """
    Create and initialize an assessment engine.

    Args:
        config: Application configuration; loaded from the environment when omitted
        formulas: Custom scoring formulas; the built-in registry when omitted
        configure_logging: Whether to set up package logging from ``config.logging``

    Returns:
        Initialized AssessmentEngine

    Raises:
        EnvironmentNotSupportedError: If the configured storage backend is unknown
        InitializationError: If translations or definitions cannot be loaded
        StorageNotAvailableError: If storage is unreachable and fallback is disabled
    """
    config = config or load_config()
    config.check_environment()

    if configure_logging:
        configure_from_config(config.logging)

    settings = config.assessment
    translator = Translator.from_locale_files(
        languages=settings.supported_languages,
        default_language=settings.default_language
    )
    question_bank = QuestionBank(definitions_path=settings.definitions_path)
    store = SessionStore.from_config(config.storage)
    validator = AnswerValidator(translator=translator)
    analyzer = ResultsAnalyzer(
        question_bank=question_bank,
        store=store,
        translator=translator,
        config=settings,
        formulas=formulas
    )
    engine = AssessmentEngine(
        question_bank=question_bank,
        store=store,
        analyzer=analyzer,
        validator=validator,
        config=settings
    )

    await question_bank.initialize()
    await store.initialize()
    await engine.initialize()

    logger.info(
        f"{config.app_name} {config.version} ready ({config.environment.env}, "
        f"storage '{store.backend_name}', languages {settings.supported_languages})"
    )
    return engine
