"""
Exceptions raised by the quiz session engine.

Business outcomes such as an already completed quiz or a busy session are
reported through ``OutcomeKind`` values; these exceptions signal failures.
"""


class QuizBotError(Exception):
    """Base exception for quiz bot errors."""
    pass


class QuestionNotFound(QuizBotError):
    """Raised when a quiz id or question index does not exist."""

    def __init__(self, quiz_id, question_index=None):
        self.quiz_id = quiz_id
        self.question_index = question_index
        if question_index is None:
            message = f"Quiz {quiz_id} not found"
        else:
            message = f"Question {question_index} not found in quiz {quiz_id}"
        super().__init__(message)


class DeliveryTimeout(QuizBotError):
    """Raised when a queued delivery task aged out before it could run."""

    def __init__(self, user_id: int, waited: float):
        self.user_id = user_id
        self.waited = waited
        super().__init__(f"Delivery task for user {user_id} timed out after {waited:.1f}s")


class SessionReset(QuizBotError):
    """Raised for delivery tasks dropped because the user's session was reset."""

    def __init__(self, user_id: int):
        self.user_id = user_id
        super().__init__(f"Session for user {user_id} was reset")


class StoreUnavailable(QuizBotError):
    """Raised when the durable store cannot be reached."""
    pass


class MalformedCallback(QuizBotError):
    """Raised when a button callback token cannot be decoded or verified."""
    pass
