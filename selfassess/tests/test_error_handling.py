"""
Tests for the error framework: error taxonomy, serialization, retry and logging.
"""

import asyncio
import json
import logging
import unittest

import pytest

from selfassess.common.error_handling import (
    AnswerValidationError,
    AssessmentError,
    ErrorCode,
    ErrorSeverity,
    SessionNotFoundError,
    StorageQuotaExceededError,
    StorageSaveError,
    convert_exception,
    log_error,
    retry,
)
from selfassess.i18n.translator import Translator


class TestAssessmentErrors(unittest.TestCase):
    """Test the error classes."""

    def test_session_not_found(self):
        error = SessionNotFoundError("s1")

        self.assertEqual(error.code, ErrorCode.SESSION_NOT_FOUND)
        self.assertEqual(error.severity, ErrorSeverity.HIGH)
        self.assertTrue(error.recoverable)
        self.assertEqual(error.session_id, "s1")
        self.assertIsNone(error.question_id)
        self.assertEqual(error.recovery_actions, ["start_new_assessment"])

    def test_context_drops_empty_values(self):
        error = StorageSaveError("session_1", context={"session_id": "1", "question_id": None})
        self.assertEqual(error.context, {"session_id": "1"})
        self.assertEqual(error.details, {"record_id": "session_1"})

    def test_to_dict(self):
        error = StorageSaveError("session_1", cause=ConnectionError("reset"), context={"session_id": "1"})
        data = error.to_dict()

        self.assertEqual(data["code"], "STORAGE_SAVE_FAILED")
        self.assertEqual(data["severity"], "high")
        self.assertTrue(data["recoverable"])
        self.assertEqual(data["exception_type"], "StorageSaveError")
        self.assertEqual(data["context"], {"session_id": "1"})
        self.assertEqual(data["details"]["cause"], {"type": "ConnectionError", "message": "reset"})
        self.assertIsNone(data["stack_trace"])

        self.assertEqual(json.loads(error.to_json())["code"], "STORAGE_SAVE_FAILED")

    def test_str(self):
        error = StorageSaveError("session_1", cause=ConnectionError("reset"))
        text = str(error)
        self.assertTrue(text.startswith("STORAGE_SAVE_FAILED: Failed to save record session_1"))
        self.assertIn("caused by ConnectionError: reset", text)

    def test_answer_validation_error(self):
        error = AnswerValidationError(
            "q1",
            [{"code": "FIELD_REQUIRED"}, {"code": "SCALE_ABOVE_MAX"}],
            session_id="s1"
        )
        self.assertEqual(error.validation_codes, ["FIELD_REQUIRED", "SCALE_ABOVE_MAX"])
        self.assertEqual(error.severity, ErrorSeverity.LOW)
        self.assertEqual(error.question_id, "q1")

    def test_user_message(self):
        translator = Translator({
            "en": {"errors": {"SESSION_NOT_FOUND": "We lost that one"}},
            "zh": {"errors": {"SESSION_NOT_FOUND": "找不到"}},
        })

        error = SessionNotFoundError("s1")
        self.assertEqual(error.user_message(), error.message)
        self.assertEqual(error.user_message(translator), "We lost that one")

        # No entry for this code: the technical message is used
        quota = StorageQuotaExceededError("session_1", limit=10)
        self.assertEqual(quota.user_message(translator), quota.message)


class TestConvertException(unittest.TestCase):
    """Test convert_exception."""

    def test_wraps_plain_exception(self):
        cause = ValueError("bad value")
        error = convert_exception(cause, context={"session_id": "s1"})

        self.assertIsInstance(error, AssessmentError)
        self.assertEqual(error.code, ErrorCode.UNKNOWN_ERROR)
        self.assertEqual(error.message, "bad value")
        self.assertIs(error.cause, cause)
        self.assertEqual(error.session_id, "s1")

    def test_default_message(self):
        error = convert_exception(ValueError(), default_message="fallback")
        self.assertEqual(error.message, "fallback")

    def test_passes_through_assessment_errors(self):
        original = SessionNotFoundError("s1")
        converted = convert_exception(original, context={"assessment_type_id": "phq-9"})

        self.assertIs(converted, original)
        self.assertEqual(converted.assessment_type_id, "phq-9")
        self.assertEqual(converted.session_id, "s1")


class TestRetry(unittest.TestCase):
    """Test the retry decorator."""

    def setUp(self):
        self.loop = asyncio.new_event_loop()
        asyncio.set_event_loop(self.loop)

    def tearDown(self):
        self.loop.close()

    def test_sync_retry_until_success(self):
        calls = []
        retries = []

        @retry(max_retries=3, retry_delay=0, jitter=0,
               on_retry=lambda attempt, error, delay: retries.append(attempt))
        def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise ConnectionError("reset")
            return "ok"

        self.assertEqual(flaky(), "ok")
        self.assertEqual(len(calls), 3)
        self.assertEqual(retries, [1, 2])

    def test_sync_gives_up(self):
        calls = []

        @retry(max_retries=2, retry_delay=0, jitter=0)
        def broken():
            calls.append(1)
            raise ConnectionError("reset")

        with self.assertRaises(ConnectionError):
            broken()
        self.assertEqual(len(calls), 3)

    def test_ignored_exceptions_are_not_retried(self):
        calls = []

        @retry(max_retries=3, retry_delay=0, ignore_exceptions=(StorageQuotaExceededError,))
        def full():
            calls.append(1)
            raise StorageQuotaExceededError("session_1")

        with self.assertRaises(StorageQuotaExceededError):
            full()
        self.assertEqual(len(calls), 1)

    def test_only_listed_exceptions_are_retried(self):
        calls = []

        @retry(max_retries=3, retry_delay=0, retry_exceptions=(ConnectionError,))
        def wrong():
            calls.append(1)
            raise KeyError("x")

        with self.assertRaises(KeyError):
            wrong()
        self.assertEqual(len(calls), 1)

    def test_async_retry(self):
        calls = []

        @retry(max_retries=1, retry_delay=0, jitter=0)
        async def flaky():
            calls.append(1)
            if len(calls) == 1:
                raise ConnectionError("reset")
            return "ok"

        self.assertEqual(self.loop.run_until_complete(flaky()), "ok")
        self.assertEqual(len(calls), 2)
        self.assertEqual(flaky.__name__, "flaky")


def test_log_error_uses_severity_level(caplog):
    with caplog.at_level(logging.INFO, logger="selfassess"):
        returned = log_error(SessionNotFoundError("s1"))

    assert returned.code == ErrorCode.SESSION_NOT_FOUND
    record = caplog.records[-1]
    assert record.levelno == logging.ERROR
    assert "ERROR [SESSION_NOT_FOUND]" in record.getMessage()
    assert "session_id=s1" in record.getMessage()


def test_log_error_converts_plain_exceptions(caplog):
    with caplog.at_level(logging.DEBUG, logger="selfassess"):
        returned = log_error(ValueError("boom"), level=logging.WARNING, context={"question_id": "q1"})

    assert isinstance(returned, AssessmentError)
    assert returned.question_id == "q1"
    record = caplog.records[-1]
    assert record.levelno == logging.WARNING
    assert "caused by ValueError: boom" in record.getMessage()


@pytest.mark.parametrize("error,level", [
    (AnswerValidationError("q1", [{"code": "FIELD_REQUIRED"}]), logging.INFO),
    (StorageQuotaExceededError(), logging.ERROR),
])
def test_log_error_levels(caplog, error, level):
    with caplog.at_level(logging.DEBUG, logger="selfassess"):
        log_error(error)
    assert caplog.records[-1].levelno == level
