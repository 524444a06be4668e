"""
User-facing message text for the quiz bot.
"""
from typing import Dict, Iterable, List, Optional

from discord.utils import escape_markdown

from .models import LeaderboardEntry, Question, QuizDefinition, UserQuizRecord
from .quiz_engine import QuizEngine

MAX_BUTTON_LABEL = 80
MEDALS = ("🥇", "🥈", "🥉")

GENERIC_FAILURE = "Sorry, there was an error. Please use /start to begin again."
STORE_FAILURE = "We couldn't save your answer right now. Please try again later with /start."
DELIVERY_FAILURE = "Your quiz timed out while we were reconnecting. Please use /start to begin again."
QUESTION_FAILURE = "This quiz question is no longer available. Please use /start to begin again."

SESSION_BUSY = "Please finish your current quiz before starting a new one!"
ALREADY_COMPLETED = "You have already completed this quiz!"
QUIZ_NOT_FOUND = "Sorry, this quiz is no longer available."
STALE_CALLBACK = "This question has already been answered."
NO_ACTIVE_SESSION = "No active quiz session. Please start a new quiz."
FOREIGN_SESSION = "This quiz belongs to someone else. Use /start to play your own."

COMMANDS_FOOTER = [
    "/start - Start a new quiz",
    "/help - Show all available commands",
    "/listquizzes - Show available quizzes",
    "/leaderboard - View top 10 players",
]


def button_label(option: str) -> str:
    """Trim an option to Discord's button label limit."""
    if len(option) <= MAX_BUTTON_LABEL:
        return option
    return option[:MAX_BUTTON_LABEL - 1] + "…"


def question_text(definition: QuizDefinition, question_index: int, question: Question) -> str:
    lines = [
        f"📝 **Question {question_index + 1} of {definition.total_questions}**",
        "",
        escape_markdown(question.prompt),
    ]
    if question.link:
        lines.extend(["", f"🔗 [Read full article]({question.link})"])
    return "\n".join(lines)


def result_text(is_correct: bool, question: Question) -> str:
    if is_correct:
        text = "✅ Correct answer! 🎉"
    else:
        text = f"❌ Wrong answer!\nThe correct answer was: {escape_markdown(question.correct)}"
    if question.link:
        text += f"\n\n🔗 Read full article: {question.link}"
    return text


def completion_text(definition: QuizDefinition, score: int) -> str:
    total = definition.total_questions
    percentage = QuizEngine.score_percentage(score, total)
    if QuizEngine.is_prize_eligible(score, total):
        verdict = "🏆 Perfect Score! You're eligible for the prize draw!"
    else:
        verdict = "Keep trying to get a perfect score!"
    lines = [
        "🎉 **Quiz Completed!**",
        "",
        f"**{escape_markdown(definition.title)}**",
        "📊 **Your Results:**",
        f"✓ Score: {score}/{total} ({percentage}%)",
        verdict,
        "",
        "📋 **Available Commands:**",
        *COMMANDS_FOOTER,
    ]
    return "\n".join(lines)


def welcome_text(definition: QuizDefinition) -> str:
    return "\n".join([
        "🎮 **Welcome to the Quiz Bot!**",
        "",
        f"Let's test your knowledge with **{escape_markdown(definition.title)}**!",
        f"Answer all {definition.total_questions} questions correctly to enter the prize draw.",
        "",
        "Press the button below when you're ready.",
    ])


def help_lines(is_admin: bool = False) -> List[str]:
    lines = ["🤖 **Available Commands:**", "", *COMMANDS_FOOTER, "/quiz_<id> - Start a specific quiz"]
    if is_admin:
        lines.extend([
            "",
            "👑 **Admin Commands:**",
            "/currentleaderboard - View detailed leaderboard with user IDs",
            "/resetprogress <user> - Clear a user's quiz progress",
        ])
    return lines


def quiz_list_text(quizzes: Iterable[QuizDefinition], completed: Dict[int, UserQuizRecord]) -> str:
    lines = ["📚 **Available Quizzes**", ""]
    for definition in quizzes:
        title = escape_markdown(definition.title)
        record = completed.get(definition.id)
        if record is not None:
            total = record.total_questions or definition.total_questions
            percentage = QuizEngine.score_percentage(record.score, total)
            lines.append(f"✅ Quiz {definition.id}. {title}")
            lines.append(f"   Score: {record.score}/{total} ({percentage}%)")
        else:
            lines.append(f"🔸 Quiz {definition.id}. {title}")
            lines.append("   Status: Available")
        lines.append("")
    return "\n".join(lines).rstrip()


def leaderboard_text(entries: List[LeaderboardEntry]) -> str:
    if not entries:
        return (
            "📊 **No quiz results yet!**\n\n"
            "Be the first to complete a quiz and make it to the leaderboard! Use /start to begin."
        )
    lines = ["🏆 **QUIZ LEADERBOARD** 🏆", ""]
    for position, entry in enumerate(entries, start=1):
        medal = MEDALS[position - 1] if position <= len(MEDALS) else "🎯"
        name = escape_markdown(entry.display_name) if entry.display_name else "Anonymous"
        lines.append(f"{medal} {position:>2}. {name}")
        lines.append(f"    Total Score: {entry.total_score} points")
        lines.append(f"    Completed Quizzes: {entry.quizzes_completed}")
        lines.append("")
    return "\n".join(lines).rstrip()


def detailed_leaderboard_text(records: List[UserQuizRecord], titles: Optional[Dict[int, str]] = None) -> str:
    titles = titles or {}
    lines = ["📊 **Detailed Leaderboard:**", ""]
    if not records:
        lines.append("No completed quizzes yet.")
        return "\n".join(lines)
    for position, record in enumerate(records, start=1):
        name = escape_markdown(record.username) if record.username else "Unknown"
        quiz = escape_markdown(titles.get(record.quiz_id, f"Quiz {record.quiz_id}"))
        lines.append(f"{position}. ID: `{record.user_id}` - {name} - {quiz} - {record.score} points")
    return "\n".join(lines)
