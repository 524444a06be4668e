"""
Quiz engine core logic for the quiz bot.
Evaluates answers and computes quiz progression. Performs no I/O.
"""
import math
from typing import Dict, Optional

from .errors import QuestionNotFound
from .models import AnswerOutcome, Question, QuizDefinition


class QuizEngine:
    """Stateless quiz logic operating only on the data handed to it."""

    def start_quiz(self, definition: Optional[QuizDefinition]) -> Dict[str, int]:
        """
        Begin a quiz at its first question.

        Args:
            definition: Quiz to start

        Returns:
            Dictionary with the starting question index

        Raises:
            QuestionNotFound: If the quiz is unknown or has no questions
        """
        if definition is None:
            raise QuestionNotFound(None)
        if not definition.questions:
            raise QuestionNotFound(definition.id, 0)
        return {'question_index': 0}

    def get_question(self, definition: Optional[QuizDefinition], question_index: int) -> Question:
        """
        Look up a question by index.

        Raises:
            QuestionNotFound: If the quiz is unknown or the index is out of range
        """
        if definition is None:
            raise QuestionNotFound(None, question_index)
        if not isinstance(question_index, int) or not 0 <= question_index < len(definition.questions):
            raise QuestionNotFound(definition.id, question_index)
        return definition.questions[question_index]

    def option_value(self, definition: Optional[QuizDefinition], question_index: int, option_index: int) -> str:
        """
        Resolve a button's option index to the option text.

        Raises:
            QuestionNotFound: If the question or option does not exist
        """
        question = self.get_question(definition, question_index)
        if not isinstance(option_index, int) or not 0 <= option_index < len(question.options):
            raise QuestionNotFound(definition.id, question_index)
        return question.options[option_index]

    def evaluate_answer(
        self,
        definition: Optional[QuizDefinition],
        question_index: int,
        chosen_option_value: str
    ) -> AnswerOutcome:
        """
        Evaluate a submitted answer.

        Args:
            definition: Quiz being played
            question_index: Index of the question being answered
            chosen_option_value: Text of the option the user picked

        Returns:
            AnswerOutcome with correctness and the next question index

        Raises:
            QuestionNotFound: If the quiz is unknown or the index is out of range
        """
        question = self.get_question(definition, question_index)
        next_index = question_index + 1
        return AnswerOutcome(
            is_correct=chosen_option_value == question.correct,
            correct_answer=question.correct,
            next_index=next_index,
            is_last_question=next_index >= len(definition.questions)
        )

    @staticmethod
    def score_percentage(score: int, total_questions: int) -> int:
        """Percentage of correct answers, rounded half up."""
        if total_questions <= 0:
            return 0
        return int(math.floor(100 * score / total_questions + 0.5))

    @classmethod
    def is_prize_eligible(cls, score: int, total_questions: int) -> bool:
        return total_questions > 0 and cls.score_percentage(score, total_questions) == 100
