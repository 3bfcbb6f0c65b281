"""
Assessment Engine

Session lifecycle for self-assessments. A session moves through

    active <-> paused
    active | paused -> completed
    active | paused -> abandoned

and never leaves completed or abandoned. Every mutation is persisted through
the SessionStore; the engine keeps a working set of sessions so a session
whose write failed can be saved again with ``save_session``.
"""

import logging
import datetime
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Set, Union

from selfassess.assessments.analyzer import ResultsAnalyzer
from selfassess.assessments.models import (
    AssessmentResult,
    AssessmentSession,
    AssessmentType,
    Question,
    SessionStatus,
)
from selfassess.assessments.question_bank import QuestionBank
from selfassess.assessments.validation import AnswerValidator, ValidationResult
from selfassess.common.config import AssessmentConfig
from selfassess.common.error_handling import (
    AnswerSubmitError,
    AnswerValidationError,
    AssessmentError,
    AssessmentTypeNotFoundError,
    InitializationError,
    QuestionNotFoundError,
    SessionAbandonedError,
    SessionAlreadyCompletedError,
    SessionCreationError,
    SessionNotFoundError,
    StorageError,
    log_error,
)
from selfassess.common.logger import LoggerAdapter
from selfassess.common.serialization import utcnow
from selfassess.storage.store import SESSION_RECORD, SessionStore, session_record_id

logger = logging.getLogger(__name__)


@dataclass
class SubmitAnswerResult:
    """
    Outcome of ``submit_answer``.

    On a validation failure ``success`` is False, ``error`` carries
    ANSWER_VALIDATION_FAILED and the session is unchanged.
    """
    success: bool
    session: AssessmentSession
    validation: ValidationResult
    error: Optional[AnswerValidationError] = None
    next_question: Optional[Question] = None
    completed: bool = False
    result: Optional[AssessmentResult] = None


def questions_to_answer(assessment_type: AssessmentType) -> List[str]:
    """Question ids that must be answered before a session completes."""
    required = assessment_type.required_question_ids
    return required or [question.id for question in assessment_type.questions]


def is_complete(assessment_type: AssessmentType, session: AssessmentSession) -> bool:
    answered = set(session.answered_question_ids)
    return all(question_id in answered for question_id in questions_to_answer(assessment_type))


def next_question_index(assessment_type: AssessmentType, session: AssessmentSession) -> int:
    """
    Position after an answer was recorded.

    Moves to one past the furthest answered question and never backwards.
    At the end of the list with questions still open it points at the first
    open question.
    """
    answered = set(session.answered_question_ids)
    positions = [assessment_type.question_index(qid) for qid in answered]
    furthest = max(positions) if positions else -1
    index = max(session.current_question_index, furthest + 1)

    if index >= len(assessment_type.questions):
        must_answer = set(questions_to_answer(assessment_type))
        for position, question in enumerate(assessment_type.questions):
            if question.id in must_answer and question.id not in answered:
                return position
        return len(assessment_type.questions)
    return index


class AssessmentEngine:
    """
    Coordinates question bank, validator, storage and analyzer.

    Construct with initialized or uninitialized collaborators and call
    ``await initialize()`` before any other operation.
    """

    def __init__(
        self,
        question_bank: QuestionBank,
        store: SessionStore,
        analyzer: ResultsAnalyzer,
        validator: Optional[AnswerValidator] = None,
        config: Optional[AssessmentConfig] = None
    ):
        self.question_bank = question_bank
        self.store = store
        self.analyzer = analyzer
        self.validator = validator or AnswerValidator()
        self.config = config or AssessmentConfig()

        self._sessions: Dict[str, AssessmentSession] = {}
        self._initialized = False
        self._halted_error: Optional[AssessmentError] = None
        self._log = LoggerAdapter(logger)

    async def initialize(self) -> None:
        """
        Initialize collaborators and load persisted sessions.

        Raises:
            InitializationError: If the question bank cannot load
            StorageNotAvailableError: If storage is unreachable without fallback
        """
        if self._initialized:
            return

        if not self.question_bank.is_initialized:
            await self.question_bank.initialize()
        if not self.store.is_initialized:
            await self.store.initialize()

        for data in await self.store.get_by_type(SESSION_RECORD):
            session = AssessmentSession.from_dict(data)
            self._sessions[session.id] = session

        self._initialized = True
        self._log.info(
            f"Assessment engine ready with {len(self._sessions)} stored sessions "
            f"on backend '{self.store.backend_name}'"
        )

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def is_halted(self) -> bool:
        return self._halted_error is not None

    def _require_ready(self, mutating: bool = False) -> None:
        if not self._initialized:
            raise InitializationError("assessment engine", "Assessment engine used before initialize()")
        if mutating and self._halted_error is not None:
            raise self._halted_error

    def _session_log(self, session: AssessmentSession) -> LoggerAdapter:
        return self._log.with_context(session_id=session.id, assessment_type_id=session.assessment_type_id)

    def _get_assessment_type(self, session: AssessmentSession) -> AssessmentType:
        assessment_type = self.question_bank.get_assessment_type(session.assessment_type_id)
        if assessment_type is None:
            raise AssessmentTypeNotFoundError(session.assessment_type_id, session_id=session.id)
        return assessment_type

    async def _load_session(self, session_id: str) -> AssessmentSession:
        session = self._sessions.get(session_id)
        if session is not None:
            return session

        data = await self.store.get(session_record_id(session_id))
        if data is None:
            raise SessionNotFoundError(session_id)
        session = AssessmentSession.from_dict(data)
        self._sessions[session.id] = session
        return session

    @staticmethod
    def _check_open(session: AssessmentSession) -> None:
        if session.status == SessionStatus.COMPLETED:
            raise SessionAlreadyCompletedError(session.id, session.assessment_type_id)
        if session.status == SessionStatus.ABANDONED:
            raise SessionAbandonedError(session.id, session.assessment_type_id)

    def _storage_failed(self, error: StorageError, session: AssessmentSession) -> None:
        log_error(error, context={"session_id": session.id, "assessment_type_id": session.assessment_type_id})
        if not error.recoverable:
            self._halted_error = error
            self._log.critical(f"Storage failure is not recoverable; halting session changes: {error.message}")

    async def _persist(self, session: AssessmentSession) -> None:
        try:
            await self.store.save(SESSION_RECORD, session.to_dict(), session_record_id(session.id))
        except StorageError as e:
            self._storage_failed(e, session)
            raise

    async def _analyze(self, session: AssessmentSession) -> Optional[AssessmentResult]:
        try:
            return await self.analyzer.analyze_session(session.copy())
        except StorageError as e:
            self._storage_failed(e, session)
            raise

    async def start_assessment(self, assessment_type_id: str, language: Optional[str] = None) -> AssessmentSession:
        """
        Start a new session.

        Args:
            assessment_type_id: Assessment to take
            language: Session language; unsupported languages fall back to the default

        Returns:
            The new session, active at question 0

        Raises:
            AssessmentTypeNotFoundError: If the assessment type is unknown
            SessionCreationError: If the session cannot be saved
        """
        self._require_ready(mutating=True)

        if self.question_bank.get_assessment_type(assessment_type_id) is None:
            raise AssessmentTypeNotFoundError(assessment_type_id)

        language = language or self.config.default_language
        if language not in self.config.supported_languages:
            self._log.warning(
                f"Language {language} is not supported; using {self.config.default_language}"
            )
            language = self.config.default_language

        session = AssessmentSession.create(assessment_type_id, language)
        try:
            await self._persist(session)
        except StorageError as e:
            raise SessionCreationError(assessment_type_id, cause=e)

        self._sessions[session.id] = session
        self._session_log(session).info(f"Started assessment {assessment_type_id} in {language}")
        return session.copy()

    async def resume_assessment(self, session_id: str) -> AssessmentSession:
        """
        Make a paused or active session active again.

        Raises:
            SessionNotFoundError: If the session does not exist
            SessionAlreadyCompletedError: If the session is completed
            SessionAbandonedError: If the session was abandoned
        """
        self._require_ready(mutating=True)
        session = await self._load_session(session_id)
        self._check_open(session)

        now = utcnow()
        if session.status == SessionStatus.PAUSED:
            session.status = SessionStatus.ACTIVE
            session.last_activity_at = now
        else:
            session.touch(now)

        await self._persist(session)
        self._session_log(session).info("Resumed assessment")
        return session.copy()

    async def submit_answer(self, session_id: str, question_id: str, value: Any) -> SubmitAnswerResult:
        """
        Validate and record an answer.

        An invalid answer leaves the session unchanged and is reported in the
        returned result. A valid answer replaces any earlier answer to the same
        question; when every required question is answered the session
        completes and its result is produced.

        Raises:
            SessionNotFoundError: If the session does not exist
            QuestionNotFoundError: If the question is not part of the assessment
            SessionAlreadyCompletedError: If the session is completed
            SessionAbandonedError: If the session was abandoned
            StorageError: If the session or result cannot be saved
            AnswerSubmitError: For any other failure while recording
        """
        self._require_ready(mutating=True)
        session = await self._load_session(session_id)
        self._check_open(session)

        assessment_type = self._get_assessment_type(session)
        question = assessment_type.get_question(question_id)
        if question is None:
            raise QuestionNotFoundError(question_id, assessment_type.id, session.id)

        log = self._session_log(session).with_context(question_id=question_id)

        try:
            validation = self.validator.validate_answer(value, question, session.language)
            if not validation.is_valid:
                error = AnswerValidationError(
                    question_id, [e.to_dict() for e in validation.errors], session_id=session.id
                )
                log.info(f"Answer rejected: {', '.join(validation.error_codes)}")
                return SubmitAnswerResult(
                    success=False,
                    session=session.copy(),
                    validation=validation,
                    error=error,
                    next_question=self._current_question(assessment_type, session, localized=True)
                )

            now = utcnow()
            if session.status == SessionStatus.PAUSED:
                session.status = SessionStatus.ACTIVE
                session.last_activity_at = now
            else:
                session.touch(now)

            replaced = session.upsert_answer(question_id, value, now)
            if replaced:
                log.debug("Replaced earlier answer")

            completed = is_complete(assessment_type, session)
            if completed:
                session.status = SessionStatus.COMPLETED
                session.completed_at = now
                session.current_question_index = len(assessment_type.questions)
            else:
                session.current_question_index = next_question_index(assessment_type, session)
        except AssessmentError:
            raise
        except Exception as e:
            raise AnswerSubmitError(session.id, question_id, cause=e)

        await self._persist(session)

        result = None
        if completed:
            log.info(f"Assessment completed after {session.time_spent:.0f}s")
            result = await self._analyze(session)

        return SubmitAnswerResult(
            success=True,
            session=session.copy(),
            validation=validation,
            next_question=None if completed else self._current_question(assessment_type, session, localized=True),
            completed=completed,
            result=result
        )

    async def pause_assessment(self, session_id: str) -> AssessmentSession:
        """
        Pause an active session; time stops accumulating until it resumes.

        Raises:
            SessionNotFoundError: If the session does not exist
            SessionAlreadyCompletedError: If the session is completed
            SessionAbandonedError: If the session was abandoned
        """
        self._require_ready(mutating=True)
        session = await self._load_session(session_id)
        self._check_open(session)

        if session.status == SessionStatus.PAUSED:
            return session.copy()

        session.touch(utcnow())
        session.status = SessionStatus.PAUSED
        await self._persist(session)
        self._session_log(session).info(f"Paused at question {session.current_question_index}")
        return session.copy()

    @staticmethod
    def _current_question(assessment_type: AssessmentType, session: AssessmentSession,
                          localized: bool) -> Optional[Question]:
        if session.status.is_terminal or session.current_question_index >= len(assessment_type.questions):
            return None
        question = assessment_type.questions[session.current_question_index]
        return question.localized(session.language) if localized else question

    async def get_current_question(self, session_id: str, localized: bool = True) -> Optional[Question]:
        """Question at the session's position, or None once finished."""
        self._require_ready()
        session = await self._load_session(session_id)
        return self._current_question(self._get_assessment_type(session), session, localized)

    async def _all_sessions(self) -> List[AssessmentSession]:
        for data in await self.store.get_by_type(SESSION_RECORD):
            if data.get("id") not in self._sessions:
                session = AssessmentSession.from_dict(data)
                self._sessions[session.id] = session
        return sorted(self._sessions.values(), key=lambda s: s.started_at)

    async def get_all_sessions(
        self, status: Optional[Union[str, SessionStatus]] = None
    ) -> List[AssessmentSession]:
        """Every known session, oldest first, optionally filtered by status."""
        self._require_ready()
        if isinstance(status, str):
            status = SessionStatus(status)
        return [
            s.copy() for s in await self._all_sessions()
            if status is None or s.status == status
        ]

    async def get_active_sessions(self) -> List[AssessmentSession]:
        """Sessions that can still be continued (active or paused)."""
        self._require_ready()
        return [s.copy() for s in await self._all_sessions() if not s.status.is_terminal]

    async def get_completed_sessions(self) -> List[AssessmentSession]:
        return await self.get_all_sessions(SessionStatus.COMPLETED)

    async def get_session(self, session_id: str) -> Optional[AssessmentSession]:
        self._require_ready()
        try:
            return (await self._load_session(session_id)).copy()
        except SessionNotFoundError:
            return None

    async def get_progress(self, session_id: str) -> Dict[str, Any]:
        """
        Progress summary of a session.

        ``estimated_time_remaining`` (seconds) extrapolates from the time spent
        per answer, or from the assessment's estimated duration before the
        first answer.
        """
        self._require_ready()
        session = await self._load_session(session_id)
        assessment_type = self._get_assessment_type(session)

        total = len(assessment_type.questions)
        answered = len(session.answers)
        remaining = max(total - answered, 0)
        if session.status == SessionStatus.COMPLETED:
            remaining = 0

        if answered:
            estimate = session.time_spent / answered * remaining
        else:
            estimate = assessment_type.estimated_duration * 60.0 * remaining / total if total else 0.0

        return {
            "session_id": session.id,
            "status": session.status.value,
            "current_question_index": session.current_question_index,
            "total_questions": total,
            "answered_questions": answered,
            "percentage": round(answered / total * 100, 1) if total else 100.0,
            "time_spent": session.time_spent,
            "estimated_time_remaining": estimate,
        }

    async def abandon_session(self, session_id: str) -> AssessmentSession:
        """
        Give up on a session. Abandoned sessions cannot be resumed.

        Raises:
            SessionNotFoundError: If the session does not exist
            SessionAlreadyCompletedError: If the session is completed
        """
        self._require_ready(mutating=True)
        session = await self._load_session(session_id)
        if session.status == SessionStatus.ABANDONED:
            return session.copy()
        self._check_open(session)

        session.touch(utcnow())
        session.status = SessionStatus.ABANDONED
        await self._persist(session)
        self._session_log(session).info("Abandoned assessment")
        return session.copy()

    async def delete_session(self, session_id: str) -> bool:
        """Remove a session from storage; results are kept."""
        self._require_ready(mutating=True)
        self._sessions.pop(session_id, None)
        deleted = await self.store.delete(session_record_id(session_id))
        if deleted:
            self._log.with_context(session_id=session_id).info("Deleted session")
        return deleted

    async def expire_inactive_sessions(self, now: Optional[datetime.datetime] = None) -> List[str]:
        """
        Abandon active sessions idle for longer than the session timeout.

        Paused sessions are kept; pausing is an explicit request to continue later.

        Returns:
            Ids of the sessions that were abandoned
        """
        self._require_ready(mutating=True)
        now = now or utcnow()
        timeout = datetime.timedelta(minutes=self.config.session_timeout_minutes)

        expired = []
        for session in await self._all_sessions():
            if session.status != SessionStatus.ACTIVE:
                continue
            if now - session.last_activity_at <= timeout:
                continue
            session.status = SessionStatus.ABANDONED
            await self._persist(session)
            expired.append(session.id)

        if expired:
            self._log.info(f"Expired {len(expired)} inactive sessions")
        return expired

    async def get_session_statistics(self) -> Dict[str, Any]:
        """Session totals per status and average completion time in seconds."""
        self._require_ready()
        sessions = await self._all_sessions()

        by_status = {status.value: 0 for status in SessionStatus}
        for session in sessions:
            by_status[session.status.value] += 1

        completed = [s for s in sessions if s.status == SessionStatus.COMPLETED]
        average_time = sum(s.time_spent for s in completed) / len(completed) if completed else 0.0

        return {
            "total_sessions": len(sessions),
            "by_status": by_status,
            "completion_rate": len(completed) / len(sessions) if sessions else 0.0,
            "average_completion_time": average_time,
        }

    async def save_session(self, session_id: str) -> AssessmentSession:
        """
        Write the working copy of a session again, e.g. after STORAGE_SAVE_FAILED.

        Raises:
            SessionNotFoundError: If the engine does not hold the session
            StorageError: If the write fails again
        """
        self._require_ready(mutating=True)
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        await self._persist(session)
        return session.copy()

    async def recover_missing_results(self) -> List[AssessmentResult]:
        """Analyze completed sessions whose result was never stored."""
        self._require_ready(mutating=True)
        scored: Set[str] = {r.session_id for r in await self.analyzer.get_all_results()}

        recovered = []
        for session in await self._all_sessions():
            if session.status != SessionStatus.COMPLETED or session.id in scored:
                continue
            result = await self._analyze(session)
            if result is not None:
                recovered.append(result)

        if recovered:
            self._log.info(f"Recovered results for {len(recovered)} completed sessions")
        return recovered

    async def close(self) -> None:
        await self.store.close()
        self._sessions.clear()
        self._initialized = False
