"""
Client-side controller for one timed screening exam.

A session ends in exactly one of three ways: the participant submits, the
countdown reaches zero, or the window is hidden ``max_tab_switches`` times
(the limit sent with the exam paper; the constructor value is only a
fallback for papers that carry none).
Ticker and activity callbacks may race each other (and the participant) to
end the session; a lock-guarded "leaving" latch lets only the first through,
so a session never produces more than one submission.
"""
from typing import Callable, Dict, Optional
import enum
import logging
import math
import threading
import time
from progression.errors import IllegalTransition, InvalidFieldValue, ProgressionError, TransientIOError
from progression.models.test_attempt import AttemptStatus
from progression.exam.activity import ActivityEventSource
from progression.exam.ticker import IntervalTicker, Ticker
from progression.exam.transport import ExamTicket, ExamTransport, SubmissionReceipt

logger = logging.getLogger(__name__)

DEFAULT_MAX_TAB_SWITCHES = 3
LEAVE_WARNING = "Your test is still in progress. Leaving now will not stop the timer. Are you sure?"


class SessionState(str, enum.Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    SUBMITTING = "submitting"
    COMPLETED = "completed"


class ExamSession:
    def __init__(
        self,
        transport: ExamTransport,
        activity_source: Optional[ActivityEventSource] = None,
        ticker: Optional[Ticker] = None,
        clock: Optional[Callable[[], float]] = None,
        on_event: Optional[Callable[[str, dict], None]] = None,
        max_tab_switches: int = DEFAULT_MAX_TAB_SWITCHES,
    ):
        if max_tab_switches < 1:
            raise ValueError("max_tab_switches must be at least 1")
        self.transport = transport
        self.activity_source = activity_source or ActivityEventSource()
        self.ticker = ticker or IntervalTicker()
        self.clock = clock or time.monotonic
        self.on_event = on_event
        self.max_tab_switches = max_tab_switches

        self.state = SessionState.NOT_STARTED
        self.ticket: Optional[ExamTicket] = None
        self.answers: Dict[int, int] = {}
        self.current_index = 0
        self.remaining_seconds = 0
        self.tab_switches = 0
        self.completion_status: Optional[AttemptStatus] = None
        self.receipt: Optional[SubmissionReceipt] = None
        self.last_error: Optional[ProgressionError] = None

        self._lock = threading.Lock()
        self._leaving = False
        self._hidden = False
        self._retried = False
        self._deadline: Optional[float] = None

    # ---------- lifecycle ----------

    def start(self, test_id: int, registration_id: int) -> ExamTicket:
        """
        Load the exam paper and begin the countdown.

        Any load failure propagates and leaves the session NOT_STARTED.
        """
        if self.state != SessionState.NOT_STARTED:
            raise IllegalTransition("Exam session has already been started")

        ticket = self.transport.load(test_id, registration_id)

        self.ticket = ticket
        # the server's limit replaces the local fallback
        if ticket.max_tab_switches is not None:
            self.max_tab_switches = ticket.max_tab_switches
        self.remaining_seconds = max(0, ticket.remaining_seconds)
        self._deadline = self.clock() + self.remaining_seconds
        self.state = SessionState.IN_PROGRESS
        self.activity_source.start(self.on_activity)
        self.ticker.start(self.tick)

        logger.info(
            f"Exam session started: registration={ticket.registration_id} "
            f"test={ticket.screening_test_id} remaining={self.remaining_seconds}s"
        )
        self._emit("started", remaining_seconds=self.remaining_seconds, question_count=ticket.question_count)
        return ticket

    def submit(self) -> bool:
        """Participant-initiated completion; False when the session is already ending."""
        return self._complete(AttemptStatus.SUBMITTED)

    def tick(self) -> None:
        if self.state != SessionState.IN_PROGRESS:
            return
        self.remaining_seconds = max(0, math.ceil(self._deadline - self.clock()))
        self._emit("tick", remaining_seconds=self.remaining_seconds)
        if self.remaining_seconds == 0:
            self._complete(AttemptStatus.TIMEOUT)

    def on_activity(self, hidden: bool) -> None:
        with self._lock:
            if self.state != SessionState.IN_PROGRESS or self._leaving:
                return
            was_hidden, self._hidden = self._hidden, hidden
            if not hidden or was_hidden:
                return
            self.tab_switches += 1
            count = self.tab_switches

        if count >= self.max_tab_switches:
            logger.info(f"Tab switch limit reached ({count}); submitting automatically")
            self._complete(AttemptStatus.AUTO_SUBMITTED)
        else:
            self._emit(
                "warning",
                message=f"Tab switch detected ({count}/{self.max_tab_switches})",
                tab_switches=count,
            )

    def leave_warning(self) -> Optional[str]:
        """Confirmation text to show when the participant tries to leave mid-exam."""
        if self.state == SessionState.IN_PROGRESS and not self._leaving:
            return LEAVE_WARNING
        return None

    def retry_submission(self) -> bool:
        """Retry a submission that failed in transit. Only one retry is allowed."""
        if self.state != SessionState.SUBMITTING or self.last_error is None:
            raise IllegalTransition("There is no failed submission to retry")
        if not isinstance(self.last_error, TransientIOError):
            raise IllegalTransition(f"The submission was rejected: {self.last_error.message}")
        if self._retried:
            raise IllegalTransition("The submission has already been retried")
        self._retried = True
        self.last_error = None
        self._transmit()
        return self.state == SessionState.COMPLETED

    @property
    def can_retry(self) -> bool:
        return (
            self.state == SessionState.SUBMITTING
            and isinstance(self.last_error, TransientIOError)
            and not self._retried
        )

    # ---------- answers & navigation ----------

    def select_answer(self, question_id: int, option_index: int) -> None:
        if self.state != SessionState.IN_PROGRESS:
            raise IllegalTransition("Answers can only be changed while the exam is in progress")
        question = self.ticket.question(question_id)
        if question is None:
            raise InvalidFieldValue(f"Question {question_id} is not part of this exam")
        if isinstance(option_index, bool) or not 0 <= option_index < len(question.options):
            raise InvalidFieldValue(f"Option {option_index} is out of range for question {question_id}")
        self.answers[question_id] = option_index

    def go_to(self, index: int) -> None:
        if self.ticket is None:
            raise IllegalTransition("Exam session has not been started")
        if not 0 <= index < self.ticket.question_count:
            raise IndexError(f"Question index {index} out of range")
        self.current_index = index

    def next(self) -> None:
        self.go_to(min(self.current_index + 1, self.ticket.question_count - 1) if self.ticket else 0)

    def previous(self) -> None:
        self.go_to(max(self.current_index - 1, 0))

    @property
    def current_question(self):
        return self.ticket.questions[self.current_index] if self.ticket else None

    @property
    def answered_count(self) -> int:
        return len(self.answers)

    # ---------- completion ----------

    def _complete(self, status: AttemptStatus) -> bool:
        with self._lock:
            if self._leaving or self.state != SessionState.IN_PROGRESS:
                return False
            self._leaving = True
            self.state = SessionState.SUBMITTING
            self.completion_status = status

        self.ticker.stop()
        self.activity_source.stop()
        logger.info(f"Exam session ending with status {status.value} ({self.answered_count} answered)")
        self._transmit()
        return True

    def _transmit(self) -> None:
        try:
            receipt = self.transport.submit(self.ticket, dict(self.answers), self.tab_switches, self.completion_status)
        except ProgressionError as e:
            self.last_error = e
            logger.warning(f"Exam submission failed: {e.message}")
            self._emit("submission_failed", message=e.message, retryable=self.can_retry)
            return

        self.receipt = receipt
        self.state = SessionState.COMPLETED
        self._emit(
            "completed",
            status=receipt.status.value,
            score=receipt.score,
            passed=receipt.passed,
        )

    def _emit(self, name: str, **payload) -> None:
        if self.on_event is not None:
            self.on_event(name, payload)
