"""
Tests for the logging and serialization helpers.
"""

import json
import logging
import datetime

import pytest

from selfassess.assessments.models import AssessmentAnswer, AssessmentSession, SessionStatus
from selfassess.common.logger import (
    LoggerAdapter,
    configure_logger,
    get_app_logger,
    log_execution_time,
    with_context,
)
from selfassess.common.serialization import parse_datetime, serialize, to_json


def test_serialize_nested_values():
    when = datetime.datetime(2024, 1, 2, tzinfo=datetime.timezone.utc)
    data = {"when": when, "status": SessionStatus.PAUSED, "items": (1, None), "skip": None}

    assert serialize(data, exclude_none=True) == {
        "when": "2024-01-02T00:00:00+00:00",
        "status": "paused",
        "items": [1, None],
    }
    assert json.loads(to_json(data))["skip"] is None


def test_parse_datetime():
    parsed = parse_datetime("2024-01-02T03:04:05Z")
    assert parsed == datetime.datetime(2024, 1, 2, 3, 4, 5, tzinfo=datetime.timezone.utc)
    # Naive values are taken as UTC
    assert parse_datetime("2024-01-02T03:04:05") == parsed
    assert parse_datetime(None) is None
    with pytest.raises(ValueError):
        parse_datetime(12345)


def test_serializable_session():
    session = AssessmentSession.create("phq-9", "zh")
    session.upsert_answer("phq9-1", 2)
    session.status = SessionStatus.PAUSED

    data = json.loads(session.to_json())
    assert data["status"] == "paused"
    assert data["answers"][0]["question_id"] == "phq9-1"
    assert AssessmentSession.from_json(session.to_json()) == session


def test_from_dict_requires_fields():
    with pytest.raises(ValueError, match="question_id"):
        AssessmentAnswer.from_dict({"value": 1})


def test_json_log_file(tmp_path):
    log_file = tmp_path / "logs" / "selfassess.log"
    logger = configure_logger(
        name="selfassess.test_json",
        level="debug",
        use_json=True,
        log_file=str(log_file),
        console_output=False
    )

    LoggerAdapter(logger, {"session_id": "s1"}).info("Started")
    for handler in logger.handlers:
        handler.close()

    entry = json.loads(log_file.read_text(encoding="utf-8").splitlines()[-1])
    assert entry["level"] == "INFO"
    assert entry["message"] == "Started [session_id=s1]"
    assert entry["session_id"] == "s1"
    assert entry["name"] == "selfassess.test_json"


def test_adapter_context():
    adapter = with_context("selfassess.test", session_id="s1")
    nested = adapter.with_context(question_id="q1", assessment_type_id=None)

    assert adapter.extra == {"session_id": "s1"}
    assert nested.extra == {"session_id": "s1", "question_id": "q1"}

    msg, kwargs = nested.process("Answer rejected", {})
    assert msg == "Answer rejected [session_id=s1 question_id=q1]"
    assert kwargs["extra"]["data"] == {"session_id": "s1", "question_id": "q1"}


def test_app_logger():
    assert get_app_logger().name == "selfassess"
    assert get_app_logger().handlers
    assert with_context(session_id="s1").logger.name == "selfassess"


def test_log_execution_time(caplog):
    @log_execution_time()
    def score():
        return 9

    @log_execution_time()
    def broken():
        raise ValueError("boom")

    with caplog.at_level(logging.DEBUG, logger="selfassess"):
        assert score() == 9
        with pytest.raises(ValueError):
            broken()

    messages = [record.getMessage() for record in caplog.records]
    assert any(m.startswith("score executed in") for m in messages)
    assert any(m.startswith("broken failed after") for m in messages)


@pytest.mark.asyncio
async def test_log_execution_time_async(caplog):
    @log_execution_time()
    async def analyze():
        return "done"

    with caplog.at_level(logging.DEBUG, logger="selfassess"):
        assert await analyze() == "done"

    assert any(r.getMessage().startswith("analyze executed in") for r in caplog.records)
