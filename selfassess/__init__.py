"""
SelfAssess Core

Engine for standardized psychological self-assessments (PHQ-9, GAD-7 and
similar questionnaires):
1. Session lifecycle with pause, resume and abandonment
2. Per-question-type answer validation with localized messages
3. Rule-based scoring, risk levels, recommendations and interpretations
4. Pluggable persistence with an in-memory fallback
"""

from selfassess.factory import create_assessment_engine

__version__ = "1.0.0"

__all__ = ["create_assessment_engine", "__version__"]
