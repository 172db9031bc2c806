"""
How an exam session reaches the grading boundary.

``ExamTransport`` is the seam: ``load`` fetches the exam paper together with
its signed session token, ``submit`` hands the answer set over for grading.
``HttpExamTransport`` speaks to the screening endpoints of this service.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional
import logging
import requests
from progression.errors import (
    ConfigurationError, IllegalTransition, InvalidFieldValue, NotFound, ProgressionError, TransientIOError,
)
from progression.models.test_attempt import AttemptStatus

logger = logging.getLogger(__name__)


@dataclass
class ExamQuestion:
    id: int
    prompt: str
    options: List[str]


@dataclass
class ExamTicket:
    """Exam paper for one session; never carries the correct options."""

    token: str
    registration_id: int
    screening_test_id: int
    title: str
    timer_minutes: int
    passing_score: int
    remaining_seconds: int
    started_at: Optional[datetime] = None
    deadline: Optional[datetime] = None
    instructions: Optional[str] = None
    max_tab_switches: Optional[int] = None
    questions: List[ExamQuestion] = field(default_factory=list)

    @property
    def question_count(self) -> int:
        return len(self.questions)

    def question(self, question_id: int) -> Optional[ExamQuestion]:
        for question in self.questions:
            if question.id == question_id:
                return question
        return None

    @classmethod
    def from_payload(cls, data: dict) -> "ExamTicket":
        try:
            paper = data["paper"]
            questions = [
                ExamQuestion(id=int(q["id"]), prompt=q["prompt"], options=list(q["options"]))
                for q in paper["questions"]
            ]
            ticket = cls(
                token=data["token"],
                registration_id=int(data["registration_id"]),
                screening_test_id=int(paper["screening_test_id"]),
                title=paper.get("title") or "",
                timer_minutes=int(paper["timer_minutes"]),
                passing_score=int(paper["passing_score"]),
                remaining_seconds=int(data["remaining_seconds"]),
                started_at=_parse_datetime(data.get("started_at")),
                deadline=_parse_datetime(data.get("deadline")),
                instructions=paper.get("instructions"),
                max_tab_switches=_optional_int(paper.get("max_tab_switches")),
                questions=questions,
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ConfigurationError(f"Malformed exam paper: {e}")

        if not ticket.questions:
            raise ConfigurationError("Screening test has no questions")
        for position, question in enumerate(ticket.questions, start=1):
            if len(question.options) < 2:
                raise ConfigurationError(f"Question {position} needs at least two options")
        if ticket.timer_minutes <= 0:
            raise ConfigurationError("Screening test timer must be a positive number of minutes")
        if ticket.max_tab_switches is not None and ticket.max_tab_switches < 1:
            raise ConfigurationError("Tab switch limit must be at least 1")
        return ticket


@dataclass
class SubmissionReceipt:
    attempt_id: int
    score: int
    correct_count: int
    total_questions: int
    passed: bool
    status: AttemptStatus
    time_taken_seconds: int

    @classmethod
    def from_payload(cls, data: dict) -> "SubmissionReceipt":
        try:
            return cls(
                attempt_id=int(data["attempt_id"]),
                score=int(data["score"]),
                correct_count=int(data["correct_count"]),
                total_questions=int(data["total_questions"]),
                passed=bool(data["passed"]),
                status=AttemptStatus(data["status"]),
                time_taken_seconds=int(data["time_taken_seconds"]),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise TransientIOError(f"Unreadable grading response: {e}")


def _optional_int(value) -> Optional[int]:
    return None if value is None else int(value)


def _parse_datetime(value) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


class ExamTransport:
    def load(self, test_id: int, registration_id: int) -> ExamTicket:
        raise NotImplementedError

    def submit(
        self,
        ticket: ExamTicket,
        answers: Dict[int, int],
        tab_switches: int,
        status: AttemptStatus,
    ) -> SubmissionReceipt:
        raise NotImplementedError


HTTP_ERRORS = {
    400: InvalidFieldValue,
    404: NotFound,
    409: IllegalTransition,
    422: ConfigurationError,
}


class HttpExamTransport(ExamTransport):
    """Exam transport over the participant screening API, authenticated with a bearer token."""

    def __init__(self, base_url: str, access_token: str, event_id: int, timeout_seconds: float = 10.0):
        if not base_url:
            raise ValueError("base_url is required")
        if not access_token:
            raise ValueError("access_token is required")

        self._base_url = str(base_url).rstrip("/")
        self._event_id = event_id
        self._timeout = float(timeout_seconds)
        self._headers = {
            "Authorization": f"Bearer {access_token}",
            "Content-Type": "application/json",
        }
        self._session = requests.Session()

    def close(self) -> None:
        self._session.close()

    def load(self, test_id: int, registration_id: int) -> ExamTicket:
        data = self._request("POST", f"/screening/{self._event_id}/start")
        ticket = ExamTicket.from_payload(data)
        if ticket.screening_test_id != test_id or ticket.registration_id != registration_id:
            raise ConfigurationError("The exam server returned a different test than the one requested")
        return ticket

    def submit(
        self,
        ticket: ExamTicket,
        answers: Dict[int, int],
        tab_switches: int,
        status: AttemptStatus,
    ) -> SubmissionReceipt:
        payload = {
            "token": ticket.token,
            "answers": {str(question_id): option for question_id, option in answers.items()},
            "tab_switches": tab_switches,
            "status": status.value,
        }
        data = self._request("POST", "/screening/submit", json=payload)
        return SubmissionReceipt.from_payload(data)

    def _request(self, method: str, path: str, **kwargs) -> dict:
        url = f"{self._base_url}{path}"
        try:
            resp = self._session.request(method, url, headers=self._headers, timeout=self._timeout, **kwargs)
        except requests.RequestException as e:
            logger.warning(f"Exam request failed: {method} {path}: {e}")
            raise TransientIOError("Could not reach the exam server")

        if resp.status_code >= 500:
            raise TransientIOError(f"Exam server error ({resp.status_code})")
        if resp.status_code >= 400:
            error_cls = HTTP_ERRORS.get(resp.status_code, ProgressionError)
            raise error_cls(self._detail(resp))

        try:
            return resp.json()
        except ValueError:
            raise TransientIOError("Exam server returned an unreadable response")

    @staticmethod
    def _detail(resp) -> str:
        try:
            data = resp.json()
        except ValueError:
            data = None
        detail = data.get("detail") if isinstance(data, dict) else None
        return detail if isinstance(detail, str) else f"Request rejected ({resp.status_code})"
