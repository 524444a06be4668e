"""
Tests for the ScoreStore against an in-memory SQLite database.
"""
import unittest
from unittest.mock import patch

from sqlalchemy.exc import OperationalError

from quizbot.errors import StoreUnavailable
from quizbot.score_store import ScoreStore
from tests.test_fixtures import IN_MEMORY_DATABASE, async_test


class TestScoreStore(unittest.TestCase):

    async def make_store(self) -> ScoreStore:
        store = ScoreStore(IN_MEMORY_DATABASE)
        await store.init()
        return store

    @async_test
    async def test_first_answer_creates_record(self):
        store = await self.make_store()
        try:
            await store.record_answer(1, 10, True, "alice")
            record = await store.get_record(1, 10)

            self.assertEqual(record.score, 1)
            self.assertFalse(record.completed)
            self.assertEqual(record.username, "alice")
        finally:
            await store.close()

    @async_test
    async def test_answers_accumulate_and_never_decrease(self):
        store = await self.make_store()
        try:
            scores = []
            for is_correct in (True, False, True, False):
                await store.record_answer(1, 10, is_correct, "alice")
                scores.append((await store.get_record(1, 10)).score)

            self.assertEqual(scores, [1, 1, 2, 2])
            self.assertEqual(scores, sorted(scores))
        finally:
            await store.close()

    @async_test
    async def test_display_name_is_refreshed(self):
        store = await self.make_store()
        try:
            await store.record_answer(1, 10, False, "alice")
            await store.record_answer(1, 10, False, "alice_renamed")
            self.assertEqual((await store.get_record(1, 10)).username, "alice_renamed")
        finally:
            await store.close()

    @async_test
    async def test_mark_completed_without_answers(self):
        store = await self.make_store()
        try:
            await store.mark_completed(1, 10, total_questions=2)
            record = await store.get_record(1, 10)

            self.assertTrue(record.completed)
            self.assertEqual(record.score, 0)
            self.assertEqual(record.total_questions, 2)
        finally:
            await store.close()

    @async_test
    async def test_completed_is_monotonic(self):
        store = await self.make_store()
        try:
            await store.record_answer(1, 10, True, "alice")
            await store.mark_completed(1, 10, 2, "alice")
            await store.mark_completed(1, 10)
            await store.record_answer(1, 10, False, None)

            record = await store.get_record(1, 10)
            self.assertTrue(record.completed)
            self.assertEqual(record.score, 1)
        finally:
            await store.close()

    @async_test
    async def test_has_completed_scopes(self):
        store = await self.make_store()
        try:
            self.assertFalse(await store.has_completed(1))
            await store.record_answer(1, 10, True, "alice")
            self.assertFalse(await store.has_completed(1, 10))

            await store.mark_completed(1, 10)

            self.assertTrue(await store.has_completed(1, 10))
            self.assertFalse(await store.has_completed(1, 11))
            self.assertTrue(await store.has_completed(1))
            self.assertFalse(await store.has_completed(2))
        finally:
            await store.close()

    @async_test
    async def test_leaderboard_ranks_completed_quizzes(self):
        store = await self.make_store()
        try:
            # bob: 3 points over two quizzes, alice: 3 points in one quiz
            for _ in range(3):
                await store.record_answer(1, 10, True, "alice")
            await store.mark_completed(1, 10)

            await store.record_answer(2, 10, True, "bob")
            await store.record_answer(2, 11, True, "bob")
            await store.record_answer(2, 11, True, "bob")
            await store.mark_completed(2, 10)
            await store.mark_completed(2, 11)

            # carol has points but no completed quiz
            await store.record_answer(3, 10, True, "carol")

            entries = await store.leaderboard(limit=10)

            self.assertEqual([entry.user_id for entry in entries], [2, 1])
            self.assertEqual(entries[0].total_score, 3)
            self.assertEqual(entries[0].quizzes_completed, 2)
            self.assertEqual(entries[0].display_name, "bob")
            self.assertEqual(entries[1].display_name, "alice")
        finally:
            await store.close()

    @async_test
    async def test_leaderboard_limit_and_empty(self):
        store = await self.make_store()
        try:
            self.assertEqual(await store.leaderboard(), [])
            for user_id in range(1, 6):
                await store.mark_completed(user_id, 10, display_name=f"user{user_id}")
            self.assertEqual(len(await store.leaderboard(limit=3)), 3)
        finally:
            await store.close()

    @async_test
    async def test_list_and_completed_records(self):
        store = await self.make_store()
        try:
            await store.record_answer(1, 10, True, "alice")
            await store.record_answer(1, 11, True, "alice")
            await store.mark_completed(1, 11)

            self.assertEqual([r.quiz_id for r in await store.list_records(1)], [10, 11])
            self.assertEqual([r.quiz_id for r in await store.list_records(1, completed_only=True)], [11])
            completed = await store.completed_records()
            self.assertEqual([(r.user_id, r.quiz_id) for r in completed], [(1, 11)])
        finally:
            await store.close()

    @async_test
    async def test_reset_user_deletes_only_that_user(self):
        store = await self.make_store()
        try:
            await store.record_answer(1, 10, True, "alice")
            await store.record_answer(1, 11, True, "alice")
            await store.record_answer(2, 10, True, "bob")

            self.assertEqual(await store.reset_user(1), 2)
            self.assertEqual(await store.list_records(1), [])
            self.assertIsNotNone(await store.get_record(2, 10))
        finally:
            await store.close()

    @async_test
    async def test_reset_user_for_one_quiz(self):
        store = await self.make_store()
        try:
            await store.record_answer(1, 10, True, "alice")
            await store.record_answer(1, 11, True, "alice")

            self.assertEqual(await store.reset_user(1, 11), 1)
            self.assertIsNotNone(await store.get_record(1, 10))
            self.assertIsNone(await store.get_record(1, 11))
        finally:
            await store.close()

    @async_test
    async def test_operational_error_becomes_store_unavailable(self):
        store = await self.make_store()
        try:
            error = OperationalError("SELECT 1", {}, Exception("database is locked"))
            with patch.object(store, "_session_factory", side_effect=error):
                with self.assertRaises(StoreUnavailable):
                    await store.has_completed(1)
                with self.assertRaises(StoreUnavailable):
                    await store.record_answer(1, 10, True, "alice")
        finally:
            await store.close()


if __name__ == '__main__':
    unittest.main()
