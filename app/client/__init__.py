"""
Exam-taking client: state machine, continuity cache and HTTP gateway
"""
from app.client.continuity import AttemptIdentity, ContinuityCache
from app.client.exam_session import ExamSession, SessionState, TerminalReason
from app.client.gateway import SubmissionGateway, TransportError
from app.client.session_context import SessionContext, UserRecord
from app.client.storage import JsonFileStore, KeyValueStore, MemoryStore

__all__ = [
    "AttemptIdentity",
    "ContinuityCache",
    "ExamSession",
    "SessionState",
    "TerminalReason",
    "SubmissionGateway",
    "TransportError",
    "SessionContext",
    "UserRecord",
    "JsonFileStore",
    "KeyValueStore",
    "MemoryStore",
]
