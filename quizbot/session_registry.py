"""
In-memory registry of per-user quiz sessions.
"""
import logging
import time
from datetime import datetime
from typing import Dict, List, Optional

from .models import Session, SessionState


class SessionRegistry:
    """
    Single source of truth for whether a user is mid-quiz.

    All mutation happens on the event loop thread. ``active_quiz_id`` and
    ``current_question_index`` are always set and cleared together.
    """

    def __init__(self):
        self.logger = logging.getLogger(__name__)
        self._sessions: Dict[int, Session] = {}

    def get_or_create(self, user_id: int) -> Session:
        """
        Get the session for a user, creating an idle one if needed.

        Args:
            user_id: Chat platform user identifier

        Returns:
            The user's Session
        """
        session = self._sessions.get(user_id)
        if session is None:
            session = Session(user_id=user_id)
            self._sessions[user_id] = session
        return session

    def get(self, user_id: int) -> Optional[Session]:
        return self._sessions.get(user_id)

    def is_active(self, user_id: int) -> bool:
        """True when the user is anywhere in a quiz flow, including mid-transition."""
        session = self._sessions.get(user_id)
        return session is not None and session.state is not SessionState.IDLE

    def claim(self, user_id: int, chat_id: Optional[int] = None) -> bool:
        """
        Move an idle session to TRANSITIONING.

        Must be called before the first await of a start request so that a
        concurrent start for the same user sees the session as busy.

        Returns:
            True if the session was idle and is now claimed, False otherwise
        """
        session = self.get_or_create(user_id)
        if session.state is not SessionState.IDLE:
            return False
        session.state = SessionState.TRANSITIONING
        session.chat_id = chat_id
        return True

    def begin(self, user_id: int, quiz_id: int, chat_id: Optional[int] = None) -> Session:
        """Put the user on question 0 of a quiz."""
        session = self.get_or_create(user_id)
        session.active_quiz_id = quiz_id
        session.current_question_index = 0
        session.last_outbound_message_id = None
        if chat_id is not None:
            session.chat_id = chat_id
        session.started_at = datetime.now()
        session.state = SessionState.AWAITING_ANSWER
        self.logger.info(
            f"Session started for user {user_id}: quiz {quiz_id}",
            extra={
                'event_type': 'session_started',
                'user_id': user_id,
                'quiz_id': quiz_id,
                'timestamp': time.time()
            }
        )
        return session

    def mark_transitioning(self, user_id: int) -> None:
        session = self.get_or_create(user_id)
        session.state = SessionState.TRANSITIONING

    def advance(self, user_id: int, next_index: int) -> Session:
        """Move an active session to the given question index."""
        session = self.get_or_create(user_id)
        if session.active_quiz_id is None:
            raise ValueError(f"Cannot advance user {user_id}: no active quiz")
        session.current_question_index = next_index
        session.state = SessionState.AWAITING_ANSWER
        self.logger.debug(f"User {user_id} advanced to question {next_index + 1}")
        return session

    def set_last_message(self, user_id: int, message_id: Optional[int]) -> None:
        session = self._sessions.get(user_id)
        if session is not None:
            session.last_outbound_message_id = message_id

    def clear(self, user_id: int) -> None:
        """
        Reset a user's session to idle.

        Args:
            user_id: Chat platform user identifier
        """
        session = self._sessions.pop(user_id, None)
        if session is not None and session.state is not SessionState.IDLE:
            self.logger.info(
                f"Session cleared for user {user_id}",
                extra={
                    'event_type': 'session_cleared',
                    'user_id': user_id,
                    'quiz_id': session.active_quiz_id,
                    'timestamp': time.time()
                }
            )

    def active_user_ids(self) -> List[int]:
        return [
            user_id for user_id, session in self._sessions.items()
            if session.state is not SessionState.IDLE
        ]
