"""
Core data models for the quiz bot.
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional, Tuple


@dataclass(frozen=True)
class Question:
    """Represents a single multiple-choice question."""
    prompt: str
    options: Tuple[str, ...]
    correct: str
    link: Optional[str] = None


@dataclass(frozen=True)
class QuizDefinition:
    """An immutable quiz loaded once at startup."""
    id: int
    title: str
    questions: Tuple[Question, ...]

    @property
    def total_questions(self) -> int:
        return len(self.questions)


class SessionState(Enum):
    """Enumeration of possible per-user session states."""
    IDLE = "idle"
    AWAITING_ANSWER = "awaiting_answer"
    TRANSITIONING = "transitioning"


@dataclass
class Session:
    """Ephemeral in-memory quiz session for a single user."""
    user_id: int
    state: SessionState = SessionState.IDLE
    active_quiz_id: Optional[int] = None
    current_question_index: Optional[int] = None
    last_outbound_message_id: Optional[int] = None
    chat_id: Optional[int] = None
    started_at: Optional[datetime] = None


@dataclass
class UserQuizRecord:
    """Durable per-(user, quiz) progress record."""
    user_id: int
    quiz_id: int
    score: int = 0
    completed: bool = False
    username: Optional[str] = None
    total_questions: Optional[int] = None
    updated_at: Optional[datetime] = None


@dataclass
class LeaderboardEntry:
    user_id: int
    display_name: Optional[str]
    total_score: int
    quizzes_completed: int


@dataclass
class AnswerOutcome:
    """Result of evaluating one submitted answer."""
    is_correct: bool
    correct_answer: str
    next_index: int
    is_last_question: bool


class CallbackAction(Enum):
    START = "s"
    ANSWER = "a"


@dataclass(frozen=True)
class CallbackPayload:
    """Structured contents of an inline button callback."""
    action: CallbackAction
    quiz_id: int
    question_index: int
    option_index: int
    user_id: int
    version: int = 1


@dataclass(frozen=True)
class Button:
    """A transport-agnostic inline button."""
    label: str
    custom_id: str


class OutcomeKind(Enum):
    """Every way a controller operation can end."""
    STARTED = "started"
    ANSWER_ACCEPTED = "answer_accepted"
    QUIZ_COMPLETED = "quiz_completed"
    ALREADY_COMPLETED = "already_completed"
    SESSION_BUSY = "session_busy"
    QUIZ_NOT_FOUND = "quiz_not_found"
    STALE_CALLBACK = "stale_callback"
    FOREIGN_SESSION = "foreign_session"
    QUESTION_NOT_FOUND = "question_not_found"
    DELIVERY_TIMEOUT = "delivery_timeout"
    STORE_UNAVAILABLE = "store_unavailable"
    SESSION_RESET = "session_reset"
    FAILED = "failed"


SUCCESS_KINDS = frozenset({
    OutcomeKind.STARTED,
    OutcomeKind.ANSWER_ACCEPTED,
    OutcomeKind.QUIZ_COMPLETED,
})


@dataclass
class ControllerResult:
    """Typed result of a SessionController operation."""
    kind: OutcomeKind
    user_message: Optional[str] = None
    is_correct: Optional[bool] = None
    score: Optional[int] = None
    total_questions: Optional[int] = None

    @property
    def success(self) -> bool:
        return self.kind in SUCCESS_KINDS


@dataclass
class BotSettings:
    """Configuration settings for the quiz bot."""
    quiz_directory: str = "./quizzes/"
    completion_scope: str = "per_quiz"
    result_display_seconds: float = 2.0
    leaderboard_limit: int = 10
    stale_after_seconds: float = 300.0
    database_url: str = "sqlite+aiosqlite:///quizbot.db"
    retry_attempts: int = 3
    retry_base_delay: float = 1.0
    callback_secret: str = "change-me"
    admin_ids: List[int] = field(default_factory=list)
