"""
Test fixtures and sample data for quiz bot tests.
"""
import asyncio
import functools
from typing import Dict, List, Optional, Sequence, Tuple
from unittest.mock import AsyncMock, Mock

import discord

from quizbot.config_manager import ConfigManager
from quizbot.data_manager import DataManager
from quizbot.delivery_queue import DeliveryQueue
from quizbot.models import Button, Question, QuizDefinition
from quizbot.progress_feed import ProgressFeed
from quizbot.score_store import ScoreStore
from quizbot.session_controller import SessionController
from quizbot.session_registry import SessionRegistry

IN_MEMORY_DATABASE = "sqlite+aiosqlite:///:memory:"
TEST_SECRET = "test-secret"


def async_test(coro):
    """Decorator to run async test methods."""
    @functools.wraps(coro)
    def wrapper(self):
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        try:
            loop.run_until_complete(coro(self))
        finally:
            loop.close()
            asyncio.set_event_loop(None)
    return wrapper


class TestFixtures:
    """Centralized test fixtures for all test modules."""

    @staticmethod
    def world_wonders() -> QuizDefinition:
        """Two question quiz used by most scenarios."""
        return QuizDefinition(
            id=1,
            title="World Wonders",
            questions=(
                Question(
                    prompt="Which of these is one of the Seven Wonders of the Ancient World?",
                    options=("Great Wall of China", "Pyramids of Giza", "Eiffel Tower", "Statue of Liberty"),
                    correct="Pyramids of Giza"
                ),
                Question(
                    prompt="Which wonder is located in Brazil?",
                    options=("Colosseum", "Taj Mahal", "Christ the Redeemer", "Machu Picchu"),
                    correct="Christ the Redeemer",
                    link="https://example.com/christ-the-redeemer"
                ),
            )
        )

    @staticmethod
    def inventions() -> QuizDefinition:
        return QuizDefinition(
            id=2,
            title="Famous Inventions",
            questions=(
                Question(
                    prompt="Who invented the telephone?",
                    options=("Thomas Edison", "Nikola Tesla", "Alexander Graham Bell", "Isaac Newton"),
                    correct="Alexander Graham Bell"
                ),
            )
        )

    @staticmethod
    def valid_quiz_json(quiz_id: int = 7) -> Dict:
        """Valid quiz file contents."""
        return {
            "id": quiz_id,
            "title": "Pop Culture Quiz",
            "questions": [
                {
                    "question": "Which artist painted the Mona Lisa?",
                    "options": ["Vincent van Gogh", "Leonardo da Vinci", "Pablo Picasso", "Claude Monet"],
                    "correct": "Leonardo da Vinci",
                    "link": "https://example.com/mona-lisa"
                },
                {
                    "question": "Which movie won Best Picture in 1994?",
                    "options": ["Pulp Fiction", "Forrest Gump"],
                    "correct": "Forrest Gump"
                }
            ]
        }

    @staticmethod
    def create_config_manager(**quiz_overrides) -> ConfigManager:
        """ConfigManager with fast timings and no environment overrides."""
        quiz = {"result_display_seconds": 0, "completion_scope": "per_quiz"}
        quiz.update(quiz_overrides)
        config = {
            "bot": {"callback_secret": TEST_SECRET, "admin_ids": [999]},
            "quiz": quiz,
            "store": {"database_url": IN_MEMORY_DATABASE, "retry_attempts": 3, "retry_base_delay": 0},
        }
        return ConfigManager(config, environ={})

    @staticmethod
    def create_data_manager(*definitions: QuizDefinition) -> DataManager:
        data_manager = DataManager("./unused-quiz-directory/")
        for definition in definitions or (TestFixtures.world_wonders(),):
            data_manager.loaded_quizzes[definition.id] = definition
        return data_manager


class FakeTransport:
    """In-memory ChatTransport recording every send and delete."""

    def __init__(self, send_delay: float = 0):
        self.send_delay = send_delay
        self.sent: List[Tuple[int, int, str, Optional[Sequence[Button]]]] = []
        self.deleted: List[Tuple[int, int]] = []
        self.events: List[Tuple[str, int]] = []
        self.fail_sends = False
        # Sends whose text contains any of these fragments raise
        self.fail_texts: List[str] = []
        self._next_id = 100

    async def send_message(self, chat_id: int, text: str, buttons: Optional[Sequence[Button]] = None) -> int:
        if self.send_delay:
            await asyncio.sleep(self.send_delay)
        if self.fail_sends or any(fragment in text for fragment in self.fail_texts):
            raise ConnectionError("transport is down")
        self._next_id += 1
        self.sent.append((chat_id, self._next_id, text, buttons))
        self.events.append(("send", self._next_id))
        return self._next_id

    async def delete_message(self, chat_id: int, message_id: int) -> None:
        self.deleted.append((chat_id, message_id))
        self.events.append(("delete", message_id))

    def texts(self) -> List[str]:
        return [text for _, _, text, _ in self.sent]

    def prompts(self) -> List[Tuple[int, str, Sequence[Button]]]:
        """Sent messages that carried answer buttons."""
        return [(message_id, text, buttons) for _, message_id, text, buttons in self.sent if buttons]


class ControllerHarness:
    """Wires a SessionController to an in-memory store and a FakeTransport."""

    def __init__(self, *definitions: QuizDefinition, stale_after: float = 300,
                 send_delay: float = 0, **quiz_overrides):
        self.config_manager = TestFixtures.create_config_manager(**quiz_overrides)
        self.data_manager = TestFixtures.create_data_manager(*definitions)
        self.transport = FakeTransport(send_delay)
        self.registry = SessionRegistry()
        self.queue = DeliveryQueue(stale_after)
        self.feed = ProgressFeed()
        self.store: Optional[ScoreStore] = None
        self.controller: Optional[SessionController] = None

    async def start(self) -> SessionController:
        self.store = ScoreStore(IN_MEMORY_DATABASE)
        await self.store.init()
        self.controller = SessionController(
            self.data_manager,
            self.config_manager,
            self.store,
            self.transport,
            registry=self.registry,
            delivery_queue=self.queue,
            progress_feed=self.feed
        )
        return self.controller

    async def stop(self):
        if self.store is not None:
            await self.store.close()

    def answer_payload(self, button: Button):
        return self.controller.codec.decode(button.custom_id)

    def option_button(self, prompt_position: int, option_text: str) -> Button:
        """Button for an option on the N-th prompt sent so far."""
        _, _, buttons = self.transport.prompts()[prompt_position]
        for button in buttons:
            if button.label == option_text:
                return button
        raise AssertionError(f"No button labelled {option_text!r}")


class MockDiscordObjects:
    """Mock Discord objects for adapter tests."""

    @staticmethod
    def create_mock_interaction(user_id: int = 42, channel_id: int = 12345,
                                custom_id: Optional[str] = None) -> Mock:
        interaction = Mock(spec=discord.Interaction)
        interaction.user = Mock()
        interaction.user.id = user_id
        interaction.user.display_name = "Tester"
        interaction.user.mention = f"<@{user_id}>"
        interaction.channel_id = channel_id
        interaction.type = discord.InteractionType.component if custom_id else discord.InteractionType.application_command
        interaction.data = {"custom_id": custom_id} if custom_id else {}

        interaction.response = Mock()
        interaction.response.send_message = AsyncMock()
        interaction.response.defer = AsyncMock()
        interaction.response.is_done = Mock(return_value=False)

        interaction.followup = Mock()
        interaction.followup.send = AsyncMock()
        return interaction
