"""
Common Components for SelfAssess

Infrastructure shared by the assessment modules:
1. Configuration - pydantic settings loaded from files and the environment
2. Logging - Centralized logging configuration
3. Error Handling - Error hierarchy, retry and logging helpers
4. Serialization - JSON-compatible conversion of records
"""

from selfassess.common.config import AppConfig, ConfigLoader, load_config
from selfassess.common.error_handling import AssessmentError, ErrorCode, ErrorSeverity
from selfassess.common.logger import configure_logger, get_logger, LoggerAdapter

__all__ = [
    'AppConfig', 'ConfigLoader', 'load_config',
    'AssessmentError', 'ErrorCode', 'ErrorSeverity',
    'configure_logger', 'get_logger', 'LoggerAdapter',
]
