"""
Assessment Architecture

Definitions, validation, scoring and the session engine.
"""

from selfassess.assessments.models import (
    AssessmentType,
    AssessmentSession,
    AssessmentResult,
    Question,
    QuestionType,
    RiskLevel,
    SessionStatus,
)
from selfassess.assessments.question_bank import QuestionBank
from selfassess.assessments.validation import AnswerValidator, ValidationResult
from selfassess.assessments.scoring import FormulaRegistry
from selfassess.assessments.analyzer import ResultsAnalyzer
from selfassess.assessments.engine import AssessmentEngine, SubmitAnswerResult

__all__ = [
    'AssessmentType', 'AssessmentSession', 'AssessmentResult', 'Question',
    'QuestionType', 'RiskLevel', 'SessionStatus',
    'QuestionBank', 'AnswerValidator', 'ValidationResult', 'FormulaRegistry',
    'ResultsAnalyzer', 'AssessmentEngine', 'SubmitAnswerResult',
]
