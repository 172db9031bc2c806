from progression.exam.session import ExamSession, SessionState
from progression.exam.activity import ActivityEventSource
from progression.exam.ticker import Ticker, ManualTicker, IntervalTicker
from progression.exam.transport import (
    ExamTransport,
    HttpExamTransport,
    ExamTicket,
    ExamQuestion,
    SubmissionReceipt,
)

__all__ = [
    "ExamSession",
    "SessionState",
    "ActivityEventSource",
    "Ticker",
    "ManualTicker",
    "IntervalTicker",
    "ExamTransport",
    "HttpExamTransport",
    "ExamTicket",
    "ExamQuestion",
    "SubmissionReceipt",
]
