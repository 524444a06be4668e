"""
Quiz session controller for the quiz bot.
Drives each user's quiz flow: start, answer, completion and recovery.
"""
import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Sequence, Tuple

from . import messages
from .callback_token import CallbackTokenCodec
from .config_manager import ConfigManager
from .data_manager import DataManager
from .delivery_queue import DeliveryQueue
from .errors import (
    DeliveryTimeout,
    MalformedCallback,
    QuestionNotFound,
    SessionReset,
    StoreUnavailable,
)
from .models import (
    AnswerOutcome,
    BotSettings,
    Button,
    CallbackAction,
    CallbackPayload,
    ControllerResult,
    LeaderboardEntry,
    OutcomeKind,
    Question,
    QuizDefinition,
    SessionState,
    UserQuizRecord,
)
from .progress_feed import ProgressFeed
from .quiz_engine import QuizEngine
from .score_store import ScoreStore
from .session_registry import SessionRegistry


class ChatTransport(Protocol):
    """Outbound chat operations the controller depends on."""

    async def send_message(self, chat_id: int, text: str, buttons: Optional[Sequence[Button]] = None) -> int:
        ...

    async def delete_message(self, chat_id: int, message_id: int) -> None:
        ...


# Failure type -> (result kind, message shown to the user)
FAILURE_RESPONSES: Dict[type, Tuple[OutcomeKind, str]] = {
    QuestionNotFound: (OutcomeKind.QUESTION_NOT_FOUND, messages.QUESTION_FAILURE),
    DeliveryTimeout: (OutcomeKind.DELIVERY_TIMEOUT, messages.DELIVERY_FAILURE),
    StoreUnavailable: (OutcomeKind.STORE_UNAVAILABLE, messages.STORE_FAILURE),
}


class SessionController:
    """
    Orchestrates per-user quiz sessions.

    Each user has at most one quiz in flight. Durable writes always happen
    before the matching message is queued, and every outbound message for a
    user goes through the DeliveryQueue so it appears in order. Any failure
    during a transition force-resets the user's session and queue and sends
    one generic message, so no user is left holding buttons for a dead session.
    """

    def __init__(
        self,
        data_manager: DataManager,
        config_manager: ConfigManager,
        score_store: ScoreStore,
        transport: ChatTransport,
        registry: Optional[SessionRegistry] = None,
        delivery_queue: Optional[DeliveryQueue] = None,
        progress_feed: Optional[ProgressFeed] = None
    ):
        """
        Initialize the session controller.

        Args:
            data_manager: Source of quiz definitions
            config_manager: Source of bot settings
            score_store: Durable progress records
            transport: Outbound chat operations
            registry: In-memory sessions, created if omitted
            delivery_queue: Per-user message queue, created if omitted
            progress_feed: Optional live progress mirror
        """
        self.logger = logging.getLogger(__name__)
        self.data_manager = data_manager
        self.config_manager = config_manager
        self.score_store = score_store
        self.transport = transport
        self.registry = registry or SessionRegistry()
        self.delivery_queue = delivery_queue or DeliveryQueue(self.settings.stale_after_seconds)
        self.progress_feed = progress_feed
        self.quiz_engine = QuizEngine()
        self.codec = CallbackTokenCodec(self.settings.callback_secret)
        # Administrative resets per user, to detect writes that raced a reset
        self._reset_counts: Dict[int, int] = {}

        self.logger.info("SessionController initialized")

    @property
    def settings(self) -> BotSettings:
        return self.config_manager.get_settings()

    # ------------------------------------------------------------------
    # Intents
    # ------------------------------------------------------------------

    async def begin_quiz(
        self,
        user_id: int,
        chat_id: int,
        quiz_id: int,
        display_name: Optional[str] = None
    ) -> ControllerResult:
        """
        Start a quiz for a user and deliver its first question.

        Args:
            user_id: Chat platform user identifier
            chat_id: Chat the quiz is played in
            quiz_id: Quiz to start
            display_name: User's current display name, for logging

        Returns:
            ControllerResult describing what happened
        """
        # Claim before the first await so a concurrent start sees a busy session
        if not self.registry.claim(user_id, chat_id):
            self.logger.info(
                f"Rejected quiz start for busy user {user_id}",
                extra={
                    'event_type': 'session_busy',
                    'user_id': user_id,
                    'quiz_id': quiz_id,
                    'timestamp': time.time()
                }
            )
            return ControllerResult(OutcomeKind.SESSION_BUSY, messages.SESSION_BUSY)

        try:
            definition = self.data_manager.get_quiz(quiz_id)
            if definition is None:
                self.registry.clear(user_id)
                return ControllerResult(OutcomeKind.QUIZ_NOT_FOUND, messages.QUIZ_NOT_FOUND)

            completed = await self._with_store_retry(
                "has_completed",
                self.score_store.has_completed,
                user_id,
                self._completion_scope(quiz_id)
            )
            if completed:
                self.registry.clear(user_id)
                return ControllerResult(OutcomeKind.ALREADY_COMPLETED, messages.ALREADY_COMPLETED)

            start = self.quiz_engine.start_quiz(definition)
            self.registry.begin(user_id, quiz_id, chat_id)
            self.logger.info(f"{display_name or user_id} started quiz {quiz_id} in chat {chat_id}")
            await self._deliver_question(user_id, chat_id, definition, start['question_index'])

            return ControllerResult(
                OutcomeKind.STARTED,
                f"Starting quiz: {definition.title}",
                total_questions=definition.total_questions
            )
        except Exception as e:
            return await self._handle_failure(user_id, chat_id, e, "begin_quiz")

    async def submit_answer(
        self,
        user_id: int,
        payload: CallbackPayload,
        display_name: Optional[str] = None
    ) -> ControllerResult:
        """
        Handle an answer button press.

        Args:
            user_id: Identity of the user who pressed the button
            payload: Decoded callback contents
            display_name: User's current display name

        Returns:
            ControllerResult describing what happened
        """
        if payload.user_id != user_id:
            self.logger.warning(
                f"User {user_id} pressed a button belonging to user {payload.user_id}",
                extra={
                    'event_type': 'foreign_session',
                    'user_id': user_id,
                    'owner_id': payload.user_id,
                    'timestamp': time.time()
                }
            )
            return ControllerResult(OutcomeKind.FOREIGN_SESSION, messages.FOREIGN_SESSION)

        session = self.registry.get(user_id)
        if session is None or session.active_quiz_id is None:
            return ControllerResult(OutcomeKind.STALE_CALLBACK, messages.NO_ACTIVE_SESSION)

        if (session.state is not SessionState.AWAITING_ANSWER
                or payload.quiz_id != session.active_quiz_id
                or payload.question_index != session.current_question_index):
            self.logger.info(
                f"Stale callback from user {user_id}",
                extra={
                    'event_type': 'stale_callback',
                    'user_id': user_id,
                    'expected': (session.active_quiz_id, session.current_question_index),
                    'received': (payload.quiz_id, payload.question_index),
                    'state': session.state.value,
                    'timestamp': time.time()
                }
            )
            return ControllerResult(OutcomeKind.STALE_CALLBACK, messages.STALE_CALLBACK)

        chat_id = session.chat_id
        self.registry.mark_transitioning(user_id)

        try:
            definition = self.data_manager.get_quiz(payload.quiz_id)
            question = self.quiz_engine.get_question(definition, payload.question_index)
            chosen = self.quiz_engine.option_value(definition, payload.question_index, payload.option_index)
            outcome = self.quiz_engine.evaluate_answer(definition, payload.question_index, chosen)

            resets_seen = self._reset_counts.get(user_id, 0)
            # Durable write happens before any confirmation is queued
            await self._with_store_retry(
                "record_answer",
                self.score_store.record_answer,
                user_id,
                payload.quiz_id,
                outcome.is_correct,
                display_name
            )
            if await self._discard_if_reset(user_id, payload.quiz_id, resets_seen):
                return ControllerResult(OutcomeKind.SESSION_RESET)

            deliveries = self._deliver_result(
                user_id, chat_id, session.last_outbound_message_id, outcome, question
            )
            self._publish(
                user_id,
                "answer_result",
                quiz_id=payload.quiz_id,
                question_index=payload.question_index,
                is_correct=outcome.is_correct,
                correct_answer=outcome.correct_answer
            )

            if outcome.is_last_question:
                return await self._complete_quiz(
                    user_id, chat_id, definition, display_name, deliveries, outcome, resets_seen
                )

            self.registry.advance(user_id, outcome.next_index)
            deliveries.append(self._deliver_question(
                user_id, chat_id, definition, outcome.next_index, after=list(deliveries)
            ))
            await self._await_deliveries(deliveries)

            return ControllerResult(OutcomeKind.ANSWER_ACCEPTED, is_correct=outcome.is_correct)
        except Exception as e:
            return await self._handle_failure(user_id, chat_id, e, "submit_answer")

    async def handle_callback(
        self,
        user_id: int,
        chat_id: int,
        token: str,
        display_name: Optional[str] = None
    ) -> ControllerResult:
        """
        Decode a button token and route it to the matching intent.

        Args:
            user_id: Identity of the user who pressed the button
            chat_id: Chat the button was pressed in
            token: Raw callback token from the transport
            display_name: User's current display name

        Returns:
            ControllerResult describing what happened
        """
        try:
            payload = self.codec.decode(token)
        except MalformedCallback as e:
            self.logger.warning(f"Rejected malformed callback from user {user_id}: {e}")
            return ControllerResult(OutcomeKind.STALE_CALLBACK, messages.STALE_CALLBACK)

        if payload.action is CallbackAction.START:
            if payload.user_id != user_id:
                return ControllerResult(OutcomeKind.FOREIGN_SESSION, messages.FOREIGN_SESSION)
            return await self.begin_quiz(user_id, chat_id, payload.quiz_id, display_name)

        return await self.submit_answer(user_id, payload, display_name)

    async def reset_user_progress(self, user_id: int) -> int:
        """
        Administrative reset of a user's durable and in-memory state.

        Returns:
            Number of durable records deleted

        Raises:
            StoreUnavailable: If the store stays unreachable after retries
        """
        self._reset_counts[user_id] = self._reset_counts.get(user_id, 0) + 1
        self.registry.clear(user_id)
        self.delivery_queue.clear(user_id)
        deleted = await self._with_store_retry("reset_user", self.score_store.reset_user, user_id)
        self.logger.info(
            f"Reset progress for user {user_id}",
            extra={
                'event_type': 'progress_reset',
                'user_id': user_id,
                'records_deleted': deleted,
                'timestamp': time.time()
            }
        )
        return deleted

    async def force_reset(self, user_id: int, chat_id: Optional[int], user_message: Optional[str] = None) -> None:
        """
        Return a user to idle, drop their queued messages and tell them.

        The notice is sent directly through the transport, bypassing the queue.
        """
        self.registry.clear(user_id)
        self.delivery_queue.clear(user_id)

        if chat_id is None or user_message is None:
            return
        try:
            await self.transport.send_message(chat_id, user_message)
        except Exception as e:
            self.logger.error(f"Failed to send reset notice to user {user_id} in chat {chat_id}: {e}")

    # ------------------------------------------------------------------
    # Read-side helpers used by the transport adapter
    # ------------------------------------------------------------------

    def start_button(self, user_id: int, quiz_id: int, label: Optional[str] = None) -> Button:
        token = self.codec.encode(CallbackPayload(
            action=CallbackAction.START,
            quiz_id=quiz_id,
            question_index=0,
            option_index=0,
            user_id=user_id
        ))
        return Button(label=label or f"Start Quiz {quiz_id}", custom_id=token)

    async def has_completed(self, user_id: int, quiz_id: Optional[int] = None) -> bool:
        return await self._with_store_retry(
            "has_completed", self.score_store.has_completed, user_id, self._completion_scope(quiz_id)
        )

    async def completed_quizzes(self, user_id: int) -> Dict[int, UserQuizRecord]:
        records = await self._with_store_retry(
            "list_records", self.score_store.list_records, user_id, True
        )
        return {record.quiz_id: record for record in records}

    async def leaderboard(self, limit: Optional[int] = None) -> List[LeaderboardEntry]:
        return await self._with_store_retry(
            "leaderboard", self.score_store.leaderboard, limit or self.settings.leaderboard_limit
        )

    async def detailed_leaderboard(self, limit: int = 100) -> List[UserQuizRecord]:
        return await self._with_store_retry("completed_records", self.score_store.completed_records, limit)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _completion_scope(self, quiz_id: Optional[int]) -> Optional[int]:
        if self.settings.completion_scope == "global":
            return None
        return quiz_id

    async def _complete_quiz(
        self,
        user_id: int,
        chat_id: int,
        definition: QuizDefinition,
        display_name: Optional[str],
        deliveries: List[asyncio.Future],
        outcome: AnswerOutcome,
        resets_seen: int
    ) -> ControllerResult:
        total = definition.total_questions
        await self._with_store_retry(
            "mark_completed",
            self.score_store.mark_completed,
            user_id,
            definition.id,
            total,
            display_name
        )
        if await self._discard_if_reset(user_id, definition.id, resets_seen):
            await asyncio.gather(*deliveries, return_exceptions=True)
            return ControllerResult(OutcomeKind.SESSION_RESET)
        record = await self._with_store_retry(
            "get_record", self.score_store.get_record, user_id, definition.id
        )
        score = record.score if record else 0

        deliveries.append(self._enqueue_send(
            user_id, chat_id, messages.completion_text(definition, score), after=list(deliveries)
        ))
        await self._await_deliveries(deliveries)
        self.registry.clear(user_id)

        self._publish(
            user_id,
            "quiz_completed",
            quiz_id=definition.id,
            score=score,
            total_questions=total,
            percentage=self.quiz_engine.score_percentage(score, total)
        )
        self.logger.info(
            f"User {user_id} completed quiz {definition.id} with {score}/{total}",
            extra={
                'event_type': 'quiz_completed',
                'user_id': user_id,
                'quiz_id': definition.id,
                'score': score,
                'total_questions': total,
                'timestamp': time.time()
            }
        )
        return ControllerResult(
            OutcomeKind.QUIZ_COMPLETED,
            is_correct=outcome.is_correct,
            score=score,
            total_questions=total
        )

    def _deliver_question(
        self,
        user_id: int,
        chat_id: int,
        definition: QuizDefinition,
        question_index: int,
        after: Sequence[asyncio.Future] = ()
    ) -> asyncio.Future:
        question = self.quiz_engine.get_question(definition, question_index)
        buttons = [
            Button(
                label=messages.button_label(option),
                custom_id=self.codec.encode(CallbackPayload(
                    action=CallbackAction.ANSWER,
                    quiz_id=definition.id,
                    question_index=question_index,
                    option_index=option_index,
                    user_id=user_id
                ))
            )
            for option_index, option in enumerate(question.options)
        ]
        text = messages.question_text(definition, question_index, question)

        async def send_question():
            if self._any_failed(after):
                return None
            message_id = await self.transport.send_message(chat_id, text, buttons=buttons)
            self.registry.set_last_message(user_id, message_id)
            self._publish(
                user_id,
                "quiz_progress",
                quiz_id=definition.id,
                question_index=question_index,
                total_questions=definition.total_questions
            )
            return message_id

        return self.delivery_queue.enqueue(user_id, send_question)

    def _deliver_result(
        self,
        user_id: int,
        chat_id: int,
        previous_prompt_id: Optional[int],
        outcome: AnswerOutcome,
        question: Question
    ) -> List[asyncio.Future]:
        text = messages.result_text(outcome.is_correct, question)
        display_seconds = self.settings.result_display_seconds

        async def show_result():
            await self._safe_delete(chat_id, previous_prompt_id)
            return await self.transport.send_message(chat_id, text)

        shown = self.delivery_queue.enqueue(user_id, show_result)

        async def retire_result():
            # Runs strictly after show_result has finished
            if self._any_failed([shown]):
                return None
            await asyncio.sleep(display_seconds)
            await self._safe_delete(chat_id, shown.result())

        return [shown, self.delivery_queue.enqueue(user_id, retire_result)]

    def _enqueue_send(
        self,
        user_id: int,
        chat_id: int,
        text: str,
        after: Sequence[asyncio.Future] = ()
    ) -> asyncio.Future:
        async def send():
            if self._any_failed(after):
                return None
            return await self.transport.send_message(chat_id, text)

        return self.delivery_queue.enqueue(user_id, send)

    async def _discard_if_reset(self, user_id: int, quiz_id: int, resets_seen: int) -> bool:
        """
        Undo a write that finished after an administrative reset of the user.

        Returns:
            True if the user was reset since ``resets_seen`` was taken
        """
        if self._reset_counts.get(user_id, 0) == resets_seen:
            return False
        self.logger.info(
            f"Discarding quiz {quiz_id} progress written after user {user_id} was reset",
            extra={
                'event_type': 'reset_race',
                'user_id': user_id,
                'quiz_id': quiz_id,
                'timestamp': time.time()
            }
        )
        await self._with_store_retry("reset_user", self.score_store.reset_user, user_id, quiz_id)
        return True

    @staticmethod
    def _any_failed(futures: Sequence[asyncio.Future]) -> bool:
        """True if any earlier delivery did not complete successfully."""
        return any(not f.done() or f.cancelled() or f.exception() is not None for f in futures)

    async def _await_deliveries(self, deliveries: List[asyncio.Future]) -> None:
        results = await asyncio.gather(*deliveries, return_exceptions=True)
        for result in results:
            if isinstance(result, BaseException):
                raise result

    async def _safe_delete(self, chat_id: int, message_id: Optional[int]) -> None:
        if not message_id:
            return
        try:
            await self.transport.delete_message(chat_id, message_id)
        except Exception as e:
            self.logger.warning(f"Could not delete message {message_id} in chat {chat_id}: {e}")

    async def _with_store_retry(self, operation: str, func: Callable[..., Awaitable[Any]], *args: Any) -> Any:
        """
        Run a store operation, retrying when the store is unavailable.

        Waits ``retry_base_delay * attempt`` seconds between attempts.

        Raises:
            StoreUnavailable: After the last attempt fails
        """
        max_attempts = max(1, self.settings.retry_attempts)
        for attempt in range(1, max_attempts + 1):
            try:
                return await func(*args)
            except StoreUnavailable as e:
                if attempt == max_attempts:
                    self.logger.error(f"Store operation {operation} failed after {max_attempts} attempts: {e}")
                    raise
                wait_time = self.settings.retry_base_delay * attempt
                self.logger.warning(
                    f"Store unavailable during {operation} (attempt {attempt}/{max_attempts}), "
                    f"retrying in {wait_time}s: {e}"
                )
                await asyncio.sleep(wait_time)

    async def _handle_failure(
        self,
        user_id: int,
        chat_id: Optional[int],
        error: Exception,
        operation: str
    ) -> ControllerResult:
        if isinstance(error, SessionReset):
            self.logger.info(f"{operation} for user {user_id} interrupted by a session reset")
            return ControllerResult(OutcomeKind.SESSION_RESET)

        kind, user_message = OutcomeKind.FAILED, messages.GENERIC_FAILURE
        for error_type, response in FAILURE_RESPONSES.items():
            if isinstance(error, error_type):
                kind, user_message = response
                break

        self.logger.error(
            f"Error in {operation} for user {user_id}: {error}",
            exc_info=kind is OutcomeKind.FAILED,
            extra={
                'event_type': 'session_failure',
                'user_id': user_id,
                'operation': operation,
                'outcome': kind.value,
                'timestamp': time.time()
            }
        )
        await self.force_reset(user_id, chat_id, user_message)
        return ControllerResult(kind, user_message)

    def _publish(self, user_id: int, event_type: str, **payload: Any) -> None:
        if self.progress_feed is None:
            return
        try:
            self.progress_feed.publish(user_id, event_type, **payload)
        except Exception as e:
            self.logger.warning(f"Progress feed publish failed for user {user_id}: {e}")
