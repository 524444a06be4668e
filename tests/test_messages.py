"""
Tests for user-facing message rendering.
"""
import unittest

from quizbot import messages
from quizbot.models import LeaderboardEntry, UserQuizRecord
from tests.test_fixtures import TestFixtures


class TestMessages(unittest.TestCase):

    def setUp(self):
        self.quiz = TestFixtures.world_wonders()

    def test_question_text(self):
        text = messages.question_text(self.quiz, 1, self.quiz.questions[1])

        self.assertIn("Question 2 of 2", text)
        self.assertIn("Which wonder is located in Brazil?", text)
        self.assertIn("https://example.com/christ-the-redeemer", text)

    def test_result_text(self):
        self.assertIn("Correct", messages.result_text(True, self.quiz.questions[0]))
        wrong = messages.result_text(False, self.quiz.questions[0])
        self.assertIn("Wrong", wrong)
        self.assertIn("Pyramids of Giza", wrong)

    def test_completion_text(self):
        partial = messages.completion_text(self.quiz, 1)
        self.assertIn("1/2 (50%)", partial)
        self.assertNotIn("prize draw", partial)

        perfect = messages.completion_text(self.quiz, 2)
        self.assertIn("2/2 (100%)", perfect)
        self.assertIn("prize draw", perfect)

    def test_button_label_is_truncated(self):
        label = messages.button_label("x" * 200)
        self.assertEqual(len(label), messages.MAX_BUTTON_LABEL)
        self.assertEqual(messages.button_label("short"), "short")

    def test_help_lines_admin_section(self):
        self.assertNotIn("/resetprogress <user> - Clear a user's quiz progress", messages.help_lines(False))
        self.assertIn("/resetprogress <user> - Clear a user's quiz progress", messages.help_lines(True))

    def test_quiz_list_text(self):
        inventions = TestFixtures.inventions()
        completed = {1: UserQuizRecord(user_id=5, quiz_id=1, score=1, completed=True, total_questions=2)}

        text = messages.quiz_list_text([self.quiz, inventions], completed)

        self.assertIn("✅ Quiz 1. World Wonders", text)
        self.assertIn("Score: 1/2 (50%)", text)
        self.assertIn("🔸 Quiz 2. Famous Inventions", text)

    def test_leaderboard_text(self):
        self.assertIn("No quiz results yet", messages.leaderboard_text([]))

        entries = [
            LeaderboardEntry(user_id=1, display_name="alice_*", total_score=4, quizzes_completed=2),
            LeaderboardEntry(user_id=2, display_name=None, total_score=1, quizzes_completed=1),
        ]
        text = messages.leaderboard_text(entries)

        self.assertIn("🥇", text)
        self.assertIn("alice\\_\\*", text)
        self.assertIn("Anonymous", text)
        self.assertIn("Total Score: 4 points", text)

    def test_detailed_leaderboard_text(self):
        records = [UserQuizRecord(user_id=7, quiz_id=1, score=2, completed=True, username="bob")]

        text = messages.detailed_leaderboard_text(records, {1: "World Wonders"})

        self.assertIn("ID: `7` - bob - World Wonders - 2 points", text)
        self.assertIn("No completed quizzes yet.", messages.detailed_leaderboard_text([]))


if __name__ == '__main__':
    unittest.main()
