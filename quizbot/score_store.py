"""
Durable score storage backed by SQLAlchemy's asyncio extension.
"""
import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional

from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    DateTime,
    Integer,
    String,
    UniqueConstraint,
    delete,
    desc,
    func,
    select,
)
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import StaticPool

from .errors import StoreUnavailable
from .models import LeaderboardEntry, UserQuizRecord

Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UserQuizRow(Base):
    __tablename__ = "user_quiz"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(BigInteger, nullable=False, index=True)
    quiz_id = Column(Integer, nullable=False)
    score = Column(Integer, nullable=False, default=0)
    completed = Column(Boolean, nullable=False, default=False, index=True)
    username = Column(String(255), nullable=True)
    total_questions = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    # One progress record per user and quiz
    __table_args__ = (UniqueConstraint("user_id", "quiz_id", name="uq_user_quiz_user_quiz"),)

    def to_record(self) -> UserQuizRecord:
        return UserQuizRecord(
            user_id=self.user_id,
            quiz_id=self.quiz_id,
            score=self.score,
            completed=self.completed,
            username=self.username,
            total_questions=self.total_questions,
            updated_at=self.updated_at
        )


class ScoreStore:
    """
    Repository for per-(user, quiz) progress records.

    Each write is a single ``INSERT .. ON CONFLICT DO UPDATE`` statement so the
    increment is atomic at the storage layer. Ordering across calls for the
    same user and quiz is the caller's responsibility.
    """

    def __init__(self, database_url: str = "sqlite+aiosqlite:///quizbot.db", engine: Optional[AsyncEngine] = None):
        self.logger = logging.getLogger(__name__)
        self.database_url = database_url
        if engine is None:
            engine = self._create_engine(database_url)
        self.engine = engine
        self._session_factory = async_sessionmaker(engine, expire_on_commit=False)

    @staticmethod
    def _create_engine(database_url: str) -> AsyncEngine:
        if database_url.startswith("sqlite") and ":memory:" in database_url:
            # Every connection to :memory: is a separate database
            return create_async_engine(
                database_url,
                poolclass=StaticPool,
                connect_args={"check_same_thread": False}
            )
        return create_async_engine(database_url, pool_pre_ping=True)

    def _insert(self):
        dialect = self.engine.dialect.name
        if dialect == "sqlite":
            return sqlite.insert(UserQuizRow.__table__)
        if dialect == "postgresql":
            return postgresql.insert(UserQuizRow.__table__)
        raise RuntimeError(f"Unsupported database dialect for upserts: {dialect}")

    async def init(self) -> None:
        """Create tables if they do not exist."""
        try:
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except (OperationalError, InterfaceError) as e:
            raise StoreUnavailable(f"Could not initialize score store: {e}") from e
        self.logger.info(f"Score store initialized ({self.engine.dialect.name})")

    async def close(self) -> None:
        await self.engine.dispose()
        self.logger.info("Score store connection closed")

    async def _execute_write(self, statement, operation: str):
        try:
            async with self._session_factory() as session:
                result = await session.execute(statement)
                await session.commit()
                return result
        except (OperationalError, InterfaceError) as e:
            self.logger.error(f"Store unavailable during {operation}: {e}")
            raise StoreUnavailable(f"{operation} failed: {e}") from e

    async def _execute_read(self, statement, operation: str):
        try:
            async with self._session_factory() as session:
                result = await session.execute(statement)
                return result.all()
        except (OperationalError, InterfaceError) as e:
            self.logger.error(f"Store unavailable during {operation}: {e}")
            raise StoreUnavailable(f"{operation} failed: {e}") from e

    async def record_answer(self, user_id: int, quiz_id: int, is_correct: bool, display_name: Optional[str]) -> None:
        """
        Upsert the user's record, adding one point for a correct answer.

        Args:
            user_id: Chat platform user identifier
            quiz_id: Quiz being answered
            is_correct: Whether the submitted answer was correct
            display_name: Last observed display name, always refreshed
        """
        now = _utcnow()
        statement = self._insert().values(
            user_id=user_id,
            quiz_id=quiz_id,
            score=1 if is_correct else 0,
            completed=False,
            username=display_name,
            created_at=now,
            updated_at=now
        )
        statement = statement.on_conflict_do_update(
            index_elements=["user_id", "quiz_id"],
            set_={
                "score": UserQuizRow.score + statement.excluded.score,
                "username": statement.excluded.username,
                "updated_at": statement.excluded.updated_at,
            }
        )
        await self._execute_write(statement, "record_answer")
        self.logger.debug(f"Recorded answer for user {user_id}, quiz {quiz_id}, correct={is_correct}")

    async def mark_completed(
        self,
        user_id: int,
        quiz_id: int,
        total_questions: Optional[int] = None,
        display_name: Optional[str] = None
    ) -> None:
        """Upsert the user's record with ``completed`` set. Idempotent."""
        now = _utcnow()
        statement = self._insert().values(
            user_id=user_id,
            quiz_id=quiz_id,
            score=0,
            completed=True,
            username=display_name,
            total_questions=total_questions,
            created_at=now,
            updated_at=now
        )
        statement = statement.on_conflict_do_update(
            index_elements=["user_id", "quiz_id"],
            set_={
                "completed": True,
                "username": func.coalesce(statement.excluded.username, UserQuizRow.username),
                "total_questions": func.coalesce(statement.excluded.total_questions, UserQuizRow.total_questions),
                "updated_at": statement.excluded.updated_at,
            }
        )
        await self._execute_write(statement, "mark_completed")
        self.logger.info(f"Marked quiz {quiz_id} completed for user {user_id}")

    async def has_completed(self, user_id: int, quiz_id: Optional[int] = None) -> bool:
        """
        Check for a completed record.

        Args:
            user_id: Chat platform user identifier
            quiz_id: Quiz to check, or None for any quiz

        Returns:
            True if a matching completed record exists
        """
        statement = select(UserQuizRow.id).where(
            UserQuizRow.user_id == user_id,
            UserQuizRow.completed.is_(True)
        )
        if quiz_id is not None:
            statement = statement.where(UserQuizRow.quiz_id == quiz_id)
        rows = await self._execute_read(statement.limit(1), "has_completed")
        return bool(rows)

    async def get_record(self, user_id: int, quiz_id: int) -> Optional[UserQuizRecord]:
        statement = select(UserQuizRow).where(
            UserQuizRow.user_id == user_id,
            UserQuizRow.quiz_id == quiz_id
        )
        rows = await self._execute_read(statement, "get_record")
        return rows[0][0].to_record() if rows else None

    async def list_records(self, user_id: int, completed_only: bool = False) -> List[UserQuizRecord]:
        statement = select(UserQuizRow).where(UserQuizRow.user_id == user_id)
        if completed_only:
            statement = statement.where(UserQuizRow.completed.is_(True))
        rows = await self._execute_read(statement.order_by(UserQuizRow.quiz_id), "list_records")
        return [row[0].to_record() for row in rows]

    async def leaderboard(self, limit: int = 10) -> List[LeaderboardEntry]:
        """
        Rank users by their total score over completed quizzes.

        Ties are broken by number of completed quizzes, then by user id.
        """
        total_score = func.sum(UserQuizRow.score).label("total_score")
        quizzes_completed = func.count(UserQuizRow.id).label("quizzes_completed")
        statement = (
            select(UserQuizRow.user_id, total_score, quizzes_completed)
            .where(UserQuizRow.completed.is_(True))
            .group_by(UserQuizRow.user_id)
            .order_by(desc("total_score"), desc("quizzes_completed"), UserQuizRow.user_id)
            .limit(limit)
        )
        rows = await self._execute_read(statement, "leaderboard")
        if not rows:
            return []

        names = await self._latest_usernames([row.user_id for row in rows])
        return [
            LeaderboardEntry(
                user_id=row.user_id,
                display_name=names.get(row.user_id),
                total_score=int(row.total_score or 0),
                quizzes_completed=int(row.quizzes_completed)
            )
            for row in rows
        ]

    async def _latest_usernames(self, user_ids: List[int]) -> Dict[int, Optional[str]]:
        statement = (
            select(UserQuizRow.user_id, UserQuizRow.username)
            .where(UserQuizRow.user_id.in_(user_ids), UserQuizRow.username.is_not(None))
            .order_by(UserQuizRow.updated_at.desc())
        )
        names: Dict[int, Optional[str]] = {}
        for row in await self._execute_read(statement, "latest_usernames"):
            names.setdefault(row.user_id, row.username)
        return names

    async def completed_records(self, limit: int = 100) -> List[UserQuizRecord]:
        """All completed records, highest score first. Used by the admin listing."""
        statement = (
            select(UserQuizRow)
            .where(UserQuizRow.completed.is_(True))
            .order_by(UserQuizRow.score.desc(), UserQuizRow.user_id)
            .limit(limit)
        )
        rows = await self._execute_read(statement, "completed_records")
        return [row[0].to_record() for row in rows]

    async def reset_user(self, user_id: int, quiz_id: Optional[int] = None) -> int:
        """
        Delete every record for a user, or only the one for ``quiz_id``.

        Returns:
            Number of records deleted
        """
        statement = delete(UserQuizRow.__table__).where(UserQuizRow.user_id == user_id)
        if quiz_id is not None:
            statement = statement.where(UserQuizRow.quiz_id == quiz_id)
        result = await self._execute_write(statement, "reset_user")
        deleted = result.rowcount or 0
        self.logger.info(f"Deleted {deleted} record(s) for user {user_id}")
        return deleted
