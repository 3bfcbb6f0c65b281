"""
Error Handling System for SelfAssess

This module provides the error framework shared by every component:
1. Error taxonomy with severity and recoverability
2. Context (session, question, assessment type) attached to each error
3. Retry decorator with backoff for transient storage failures
4. Structured error logging
"""

import time
import logging
import traceback
import asyncio
import random
import functools
import json
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple, Type, TypeVar, Union, cast
from datetime import datetime, timezone
from pydantic import BaseModel, ConfigDict, Field, field_validator

# Type variables
T = TypeVar('T')
F = TypeVar('F', bound=Callable)

logger = logging.getLogger(__name__)


class ErrorSeverity(Enum):
    """Severity levels for errors"""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCode(Enum):
    """Standard error codes for SelfAssess"""
    UNKNOWN_ERROR = "UNKNOWN_ERROR"

    # Initialization errors
    INITIALIZATION_FAILED = "INITIALIZATION_FAILED"
    ENVIRONMENT_NOT_SUPPORTED = "ENVIRONMENT_NOT_SUPPORTED"

    # Session errors
    SESSION_NOT_FOUND = "SESSION_NOT_FOUND"
    SESSION_ALREADY_COMPLETED = "SESSION_ALREADY_COMPLETED"
    SESSION_ABANDONED = "SESSION_ABANDONED"
    SESSION_CREATION_FAILED = "SESSION_CREATION_FAILED"

    # Question / answer errors
    QUESTION_NOT_FOUND = "QUESTION_NOT_FOUND"
    ANSWER_VALIDATION_FAILED = "ANSWER_VALIDATION_FAILED"
    ANSWER_SUBMIT_FAILED = "ANSWER_SUBMIT_FAILED"

    # Storage errors
    STORAGE_NOT_AVAILABLE = "STORAGE_NOT_AVAILABLE"
    STORAGE_QUOTA_EXCEEDED = "STORAGE_QUOTA_EXCEEDED"
    STORAGE_SAVE_FAILED = "STORAGE_SAVE_FAILED"
    STORAGE_LOAD_FAILED = "STORAGE_LOAD_FAILED"

    # Definition / analysis errors
    ASSESSMENT_TYPE_NOT_FOUND = "ASSESSMENT_TYPE_NOT_FOUND"
    ASSESSMENT_TYPE_INVALID = "ASSESSMENT_TYPE_INVALID"
    UNKNOWN_SCORING_FORMULA = "UNKNOWN_SCORING_FORMULA"


# Suggested next steps shown to the user, keyed by error code
RECOVERY_ACTIONS: Dict[ErrorCode, List[str]] = {
    ErrorCode.SESSION_NOT_FOUND: ["start_new_assessment"],
    ErrorCode.SESSION_ALREADY_COMPLETED: ["view_results", "start_new_assessment"],
    ErrorCode.SESSION_ABANDONED: ["start_new_assessment"],
    ErrorCode.SESSION_CREATION_FAILED: ["retry", "reload"],
    ErrorCode.ANSWER_VALIDATION_FAILED: ["correct_answer"],
    ErrorCode.ANSWER_SUBMIT_FAILED: ["retry"],
    ErrorCode.STORAGE_NOT_AVAILABLE: ["use_private_mode_off", "contact_support"],
    ErrorCode.STORAGE_QUOTA_EXCEEDED: ["clear_old_results", "retry"],
    ErrorCode.STORAGE_SAVE_FAILED: ["retry"],
    ErrorCode.STORAGE_LOAD_FAILED: ["reload"],
    ErrorCode.ASSESSMENT_TYPE_NOT_FOUND: ["choose_another_assessment"],
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ErrorInfo(BaseModel):
    """Structured information about an error"""
    model_config = ConfigDict(use_enum_values=True)

    code: ErrorCode
    message: str
    timestamp: datetime = Field(default_factory=_utcnow)
    severity: ErrorSeverity = ErrorSeverity.MEDIUM
    recoverable: bool = True
    details: Optional[Dict[str, Any]] = None
    exception_type: Optional[str] = None
    stack_trace: Optional[List[str]] = None
    context: Optional[Dict[str, Any]] = None

    @field_validator('stack_trace', mode='before')
    @classmethod
    def validate_stack_trace(cls, v):
        """Format stack trace if it's a string"""
        if isinstance(v, str):
            return v.splitlines()
        return v


class AssessmentError(Exception):
    """Base exception class for all SelfAssess errors"""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.UNKNOWN_ERROR,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        recoverable: bool = True,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.severity = severity
        self.recoverable = recoverable
        self.details = details or {}
        self.cause = cause
        self.context = {k: v for k, v in (context or {}).items() if v is not None}
        self.timestamp = _utcnow()

    @property
    def session_id(self) -> Optional[str]:
        return self.context.get("session_id")

    @property
    def question_id(self) -> Optional[str]:
        return self.context.get("question_id")

    @property
    def assessment_type_id(self) -> Optional[str]:
        return self.context.get("assessment_type_id")

    @property
    def recovery_actions(self) -> List[str]:
        """Suggested recovery actions for this error"""
        return list(RECOVERY_ACTIONS.get(self.code, []))

    def user_message(self, translator=None) -> str:
        """
        Get a user-facing message for this error.

        Args:
            translator: Optional translator; looks up ``errors.<CODE>``

        Returns:
            Localized message, or the technical message when no entry exists
        """
        if translator is None:
            return self.message
        key = f"errors.{self.code.value}"
        text = translator.t(key, self.details)
        return self.message if text == key else text

    def to_error_info(self, include_stack_trace: bool = False) -> ErrorInfo:
        """Convert the exception to an ErrorInfo object"""
        stack_trace = None
        if include_stack_trace:
            stack_trace = traceback.format_exc().splitlines()

        details = dict(self.details)
        if self.cause is not None:
            details["cause"] = {
                "type": type(self.cause).__name__,
                "message": str(self.cause)
            }

        return ErrorInfo(
            code=self.code,
            message=self.message,
            timestamp=self.timestamp,
            severity=self.severity,
            recoverable=self.recoverable,
            details=details,
            exception_type=type(self).__name__,
            stack_trace=stack_trace,
            context=self.context
        )

    def to_dict(self, include_stack_trace: bool = False) -> Dict[str, Any]:
        """Convert the exception to a JSON-compatible dictionary"""
        return self.to_error_info(include_stack_trace).model_dump(mode="json")

    def to_json(self, include_stack_trace: bool = False) -> str:
        """Convert the exception to a JSON string"""
        return json.dumps(self.to_dict(include_stack_trace), ensure_ascii=False)

    def __str__(self) -> str:
        base_str = f"{self.code.value}: {self.message}"
        if self.details:
            base_str += f" (details: {self.details})"
        if self.cause:
            base_str += f" caused by {type(self.cause).__name__}: {str(self.cause)}"
        return base_str


# Initialization errors

class InitializationError(AssessmentError):
    """Error raised when a component fails to initialize or is used before it"""

    def __init__(
        self,
        component: str,
        message: Optional[str] = None,
        cause: Optional[Exception] = None
    ):
        super().__init__(
            message=message or f"{component} failed to initialize",
            code=ErrorCode.INITIALIZATION_FAILED,
            severity=ErrorSeverity.CRITICAL,
            recoverable=False,
            details={"component": component},
            cause=cause
        )


class EnvironmentNotSupportedError(AssessmentError):
    """Error raised when the configured environment cannot be served"""

    def __init__(self, feature: str, value: Any):
        super().__init__(
            message=f"Unsupported {feature}: {value}",
            code=ErrorCode.ENVIRONMENT_NOT_SUPPORTED,
            severity=ErrorSeverity.CRITICAL,
            recoverable=False,
            details={"feature": feature, "value": value}
        )


# Session errors

class SessionNotFoundError(AssessmentError):
    """Error raised when a session is not found"""

    def __init__(self, session_id: str, context: Optional[Dict[str, Any]] = None):
        context = dict(context or {})
        context["session_id"] = session_id
        super().__init__(
            message=f"Session with ID {session_id} not found",
            code=ErrorCode.SESSION_NOT_FOUND,
            severity=ErrorSeverity.HIGH,
            context=context
        )


class SessionAlreadyCompletedError(AssessmentError):
    """Error raised when mutating a completed session"""

    def __init__(self, session_id: str, assessment_type_id: Optional[str] = None):
        super().__init__(
            message=f"Session {session_id} is already completed",
            code=ErrorCode.SESSION_ALREADY_COMPLETED,
            severity=ErrorSeverity.MEDIUM,
            context={"session_id": session_id, "assessment_type_id": assessment_type_id}
        )


class SessionAbandonedError(AssessmentError):
    """Error raised when mutating an abandoned session"""

    def __init__(self, session_id: str, assessment_type_id: Optional[str] = None):
        super().__init__(
            message=f"Session {session_id} has been abandoned",
            code=ErrorCode.SESSION_ABANDONED,
            severity=ErrorSeverity.MEDIUM,
            context={"session_id": session_id, "assessment_type_id": assessment_type_id}
        )


class SessionCreationError(AssessmentError):
    """Error raised when a new session cannot be persisted"""

    def __init__(self, assessment_type_id: str, cause: Optional[Exception] = None):
        super().__init__(
            message=f"Could not create a session for assessment {assessment_type_id}",
            code=ErrorCode.SESSION_CREATION_FAILED,
            severity=ErrorSeverity.HIGH,
            cause=cause,
            context={"assessment_type_id": assessment_type_id}
        )


# Question / answer errors

class QuestionNotFoundError(AssessmentError):
    """Error raised when a question is not found"""

    def __init__(
        self,
        question_id: str,
        assessment_type_id: Optional[str] = None,
        session_id: Optional[str] = None
    ):
        super().__init__(
            message=f"Question with ID {question_id} not found",
            code=ErrorCode.QUESTION_NOT_FOUND,
            severity=ErrorSeverity.MEDIUM,
            context={
                "question_id": question_id,
                "assessment_type_id": assessment_type_id,
                "session_id": session_id
            }
        )


class AnswerValidationError(AssessmentError):
    """
    Validation failure for a submitted answer.

    Carried inside a SubmitAnswerResult rather than raised, so the caller can
    re-prompt the same question. ``validation_codes`` lists the nested
    validator error codes.
    """

    def __init__(
        self,
        question_id: str,
        validation_errors: List[Dict[str, Any]],
        session_id: Optional[str] = None
    ):
        codes = [error["code"] for error in validation_errors]
        super().__init__(
            message=f"Answer for question {question_id} failed validation: {', '.join(codes)}",
            code=ErrorCode.ANSWER_VALIDATION_FAILED,
            severity=ErrorSeverity.LOW,
            details={"validation_errors": validation_errors},
            context={"question_id": question_id, "session_id": session_id}
        )
        self.validation_codes = codes


class AnswerSubmitError(AssessmentError):
    """Error raised when an answer cannot be recorded for a non-storage reason"""

    def __init__(
        self,
        session_id: str,
        question_id: str,
        cause: Optional[Exception] = None
    ):
        super().__init__(
            message=f"Failed to submit answer for question {question_id}",
            code=ErrorCode.ANSWER_SUBMIT_FAILED,
            severity=ErrorSeverity.HIGH,
            cause=cause,
            context={"session_id": session_id, "question_id": question_id}
        )


# Storage errors

class StorageError(AssessmentError):
    """Base class for storage-related errors"""

    def __init__(
        self,
        message: str,
        code: ErrorCode,
        severity: ErrorSeverity = ErrorSeverity.HIGH,
        recoverable: bool = True,
        record_id: Optional[str] = None,
        cause: Optional[Exception] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            code=code,
            severity=severity,
            recoverable=recoverable,
            details={"record_id": record_id} if record_id else None,
            cause=cause,
            context=context
        )


class StorageNotAvailableError(StorageError):
    """Raised when no storage backend can be used at all"""

    def __init__(self, backend: str, cause: Optional[Exception] = None):
        super().__init__(
            message=f"Storage backend {backend} is not available",
            code=ErrorCode.STORAGE_NOT_AVAILABLE,
            severity=ErrorSeverity.CRITICAL,
            recoverable=False,
            cause=cause
        )


class StorageQuotaExceededError(StorageError):
    """Raised when the backend refuses a write because it is full"""

    def __init__(self, record_id: Optional[str] = None, limit: Optional[int] = None,
                 cause: Optional[Exception] = None):
        super().__init__(
            message=f"Storage quota exceeded{f' (limit: {limit})' if limit else ''}",
            code=ErrorCode.STORAGE_QUOTA_EXCEEDED,
            record_id=record_id,
            cause=cause
        )


class StorageSaveError(StorageError):
    """Raised when a record could not be written"""

    def __init__(self, record_id: str, cause: Optional[Exception] = None,
                 context: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=f"Failed to save record {record_id}",
            code=ErrorCode.STORAGE_SAVE_FAILED,
            record_id=record_id,
            cause=cause,
            context=context
        )


class StorageLoadError(StorageError):
    """Raised when a record could not be read"""

    def __init__(self, record_id: str, cause: Optional[Exception] = None,
                 context: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=f"Failed to load record {record_id}",
            code=ErrorCode.STORAGE_LOAD_FAILED,
            record_id=record_id,
            cause=cause,
            context=context
        )


# Definition / analysis errors

class AssessmentTypeNotFoundError(AssessmentError):
    """Error raised when an assessment type is unknown to the question bank"""

    def __init__(self, assessment_type_id: str, session_id: Optional[str] = None):
        super().__init__(
            message=f"Assessment type {assessment_type_id} not found",
            code=ErrorCode.ASSESSMENT_TYPE_NOT_FOUND,
            severity=ErrorSeverity.MEDIUM,
            context={"assessment_type_id": assessment_type_id, "session_id": session_id}
        )


class AssessmentDefinitionError(AssessmentError):
    """Error raised when an assessment definition fails load-time checks"""

    def __init__(self, assessment_type_id: str, problems: List[str]):
        super().__init__(
            message=f"Invalid definition for {assessment_type_id}: {'; '.join(problems)}",
            code=ErrorCode.ASSESSMENT_TYPE_INVALID,
            severity=ErrorSeverity.CRITICAL,
            recoverable=False,
            details={"problems": problems},
            context={"assessment_type_id": assessment_type_id}
        )


class ScoringError(AssessmentError):
    """Error raised when a scoring rule cannot be evaluated"""

    def __init__(self, rule_id: str, formula: Optional[str], assessment_type_id: Optional[str] = None):
        super().__init__(
            message=f"Unknown scoring formula '{formula}' for rule {rule_id}",
            code=ErrorCode.UNKNOWN_SCORING_FORMULA,
            severity=ErrorSeverity.HIGH,
            recoverable=False,
            details={"rule_id": rule_id, "formula": formula},
            context={"assessment_type_id": assessment_type_id}
        )


def convert_exception(
    exception: Exception,
    default_message: str = "An unexpected error occurred",
    default_code: ErrorCode = ErrorCode.UNKNOWN_ERROR,
    default_severity: ErrorSeverity = ErrorSeverity.HIGH,
    context: Optional[Dict[str, Any]] = None
) -> AssessmentError:
    """
    Convert a standard exception to an AssessmentError.

    Args:
        exception: The exception to convert
        default_message: Default message if the exception has no message
        default_code: Default error code
        default_severity: Default error severity
        context: Optional additional context

    Returns:
        Converted AssessmentError
    """
    if isinstance(exception, AssessmentError):
        if context:
            exception.context.update({k: v for k, v in context.items() if v is not None})
        return exception

    return AssessmentError(
        message=str(exception) or default_message,
        code=default_code,
        severity=default_severity,
        cause=exception,
        context=context
    )


def retry(
    max_retries: int = 3,
    retry_delay: float = 1.0,
    backoff_factor: float = 2.0,
    jitter: float = 0.1,
    retry_exceptions: Tuple[Type[Exception], ...] = (Exception,),
    ignore_exceptions: Tuple[Type[Exception], ...] = (),
    on_retry: Optional[Callable[[int, Exception, float], None]] = None
):
    """
    Decorator for retrying functions when exceptions occur.

    Args:
        max_retries: Maximum number of retries
        retry_delay: Initial delay between retries in seconds
        backoff_factor: Factor to increase delay with each retry
        jitter: Random jitter factor to add to delay
        retry_exceptions: Tuple of exception types to retry on
        ignore_exceptions: Tuple of exception types to not retry on
        on_retry: Optional callback called before each retry

    Returns:
        Decorated function
    """
    def next_delay(delay: float) -> float:
        return max(0.0, delay * (1 + random.uniform(-jitter, jitter)))

    def decorator(func: F) -> F:
        if asyncio.iscoroutinefunction(func):
            @functools.wraps(func)
            async def async_wrapper(*args, **kwargs):
                retries = 0
                delay = retry_delay

                while True:
                    try:
                        return await func(*args, **kwargs)
                    except ignore_exceptions:
                        raise
                    except retry_exceptions as e:
                        retries += 1
                        if retries > max_retries:
                            raise

                        actual_delay = next_delay(delay)
                        if on_retry:
                            on_retry(retries, e, actual_delay)

                        logger.warning(
                            f"Retry {retries}/{max_retries} for {func.__name__} "
                            f"after {actual_delay:.2f}s due to {type(e).__name__}: {e}"
                        )
                        await asyncio.sleep(actual_delay)
                        delay *= backoff_factor

            return cast(F, async_wrapper)

        @functools.wraps(func)
        def sync_wrapper(*args, **kwargs):
            retries = 0
            delay = retry_delay

            while True:
                try:
                    return func(*args, **kwargs)
                except ignore_exceptions:
                    raise
                except retry_exceptions as e:
                    retries += 1
                    if retries > max_retries:
                        raise

                    actual_delay = next_delay(delay)
                    if on_retry:
                        on_retry(retries, e, actual_delay)

                    logger.warning(
                        f"Retry {retries}/{max_retries} for {func.__name__} "
                        f"after {actual_delay:.2f}s due to {type(e).__name__}: {e}"
                    )
                    time.sleep(actual_delay)
                    delay *= backoff_factor

        return cast(F, sync_wrapper)

    return decorator


def log_error(
    error: Union[AssessmentError, Exception],
    level: Optional[int] = None,
    include_stack_trace: bool = False,
    context: Optional[Dict[str, Any]] = None
) -> AssessmentError:
    """
    Log an error with standardized format.

    Args:
        error: The error to log
        level: Logging level; derived from the error severity when omitted
        include_stack_trace: Whether to include stack trace
        context: Additional context to include

    Returns:
        The error as an AssessmentError
    """
    error = convert_exception(error, context=context)

    if level is None:
        level = {
            ErrorSeverity.LOW: logging.INFO,
            ErrorSeverity.MEDIUM: logging.WARNING,
            ErrorSeverity.HIGH: logging.ERROR,
            ErrorSeverity.CRITICAL: logging.CRITICAL,
        }[error.severity]

    message = f"ERROR [{error.code.value}]: {error.message}"
    if error.context:
        context_str = ", ".join(f"{k}={v}" for k, v in error.context.items())
        message += f" (context: {context_str})"
    if error.cause:
        message += f" caused by {type(error.cause).__name__}: {str(error.cause)}"
    if include_stack_trace:
        message += f"\n{traceback.format_exc()}"

    logger.log(level, message)
    return error
