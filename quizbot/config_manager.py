"""
Configuration manager for quiz bot settings.
"""
import logging
import os
from dataclasses import replace
from typing import Any, Dict, List, Mapping, Optional

from .models import BotSettings


class ConfigManager:
    """Manages bot configuration loaded from config.json and the environment."""

    DEFAULT_SECRET = "change-me"
    COMPLETION_SCOPES = ("per_quiz", "global")

    # Validation limits
    MIN_RESULT_DISPLAY = 0
    MAX_RESULT_DISPLAY = 30
    MIN_STALE_AFTER = 1
    MAX_STALE_AFTER = 3600
    MIN_RETRY_ATTEMPTS = 1
    MAX_RETRY_ATTEMPTS = 10
    MIN_LEADERBOARD_LIMIT = 1
    MAX_LEADERBOARD_LIMIT = 50

    def __init__(self, config: Optional[Mapping[str, Any]] = None, environ: Optional[Mapping[str, str]] = None):
        """
        Initialize ConfigManager.

        Args:
            config: Parsed config.json contents
            environ: Environment mapping, defaults to os.environ
        """
        self.logger = logging.getLogger(__name__)
        self._settings = BotSettings()
        if config:
            self.apply_config(config)
        self.apply_environment(os.environ if environ is None else environ)

    def get_settings(self) -> BotSettings:
        """
        Get current settings.

        Returns:
            BotSettings object with current configuration
        """
        return self._settings

    def apply_config(self, config: Mapping[str, Any]) -> List[str]:
        """
        Apply a config.json style dictionary.

        Invalid values are logged and skipped, keeping the previous value.

        Returns:
            List of error messages for rejected values
        """
        errors = []
        bot = config.get('bot', {}) or {}
        quiz = config.get('quiz', {}) or {}
        delivery = config.get('delivery', {}) or {}
        store = config.get('store', {}) or {}

        setters = [
            (bot, 'admin_ids', self.set_admin_ids),
            (bot, 'callback_secret', self.set_callback_secret),
            (quiz, 'quiz_directory', self.set_quiz_directory),
            (quiz, 'completion_scope', self.set_completion_scope),
            (quiz, 'result_display_seconds', self.set_result_display_seconds),
            (quiz, 'leaderboard_limit', self.set_leaderboard_limit),
            (delivery, 'stale_after_seconds', self.set_stale_after_seconds),
            (store, 'database_url', self.set_database_url),
            (store, 'retry_attempts', self.set_retry_attempts),
            (store, 'retry_base_delay', self.set_retry_base_delay),
        ]
        for section, key, setter in setters:
            if key not in section:
                continue
            result = setter(section[key])
            if not result['success']:
                errors.append(result['error'])
        return errors

    def apply_environment(self, environ: Mapping[str, str]) -> None:
        """Environment variables take precedence over config.json."""
        if environ.get('DATABASE_URL'):
            self.set_database_url(environ['DATABASE_URL'])
        if environ.get('QUIZBOT_CALLBACK_SECRET'):
            self.set_callback_secret(environ['QUIZBOT_CALLBACK_SECRET'])
        if environ.get('ADMIN_IDS'):
            result = self.set_admin_ids(self.parse_admin_ids(environ['ADMIN_IDS']))
            if not result['success']:
                self.logger.error(f"Ignoring ADMIN_IDS: {result['error']}")

    @staticmethod
    def parse_admin_ids(raw: str) -> List[Any]:
        """Split a comma separated id list, keeping bad entries for validation."""
        parsed = []
        for part in raw.split(','):
            part = part.strip()
            if not part:
                continue
            parsed.append(int(part) if part.isdigit() else part)
        return parsed

    def _reject(self, error_msg: str, user_message: str) -> Dict[str, Any]:
        self.logger.error(error_msg)
        return {'success': False, 'error': error_msg, 'user_message': f"❌ {user_message}"}

    def _accept(self, message: str, **changes: Any) -> Dict[str, Any]:
        self._settings = replace(self._settings, **changes)
        self.logger.info(message)
        return {'success': True, 'message': message, 'user_message': f"✅ {message}"}

    def _set_number(self, name: str, label: str, value: Any, minimum: float, maximum: float,
                    integer: bool, unit: str = "") -> Dict[str, Any]:
        allowed = (int,) if integer else (int, float)
        if isinstance(value, bool) or not isinstance(value, allowed):
            expected = "an integer" if integer else "a number"
            return self._reject(
                f"{label} must be {expected}, got {type(value).__name__}",
                f"Invalid input: Expected {expected}, got {type(value).__name__}"
            )
        if value < minimum or value > maximum:
            return self._reject(
                f"{label} must be between {minimum} and {maximum}{unit}, got {value}",
                f"{label} out of range: allowed {minimum}-{maximum}{unit}"
            )
        return self._accept(f"{label} set to {value}{unit}", **{name: value})

    def set_result_display_seconds(self, seconds: Any) -> Dict[str, Any]:
        """
        Set how long answer results stay visible.

        Args:
            seconds: Display time in seconds

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        return self._set_number(
            'result_display_seconds', "Result display time", seconds,
            self.MIN_RESULT_DISPLAY, self.MAX_RESULT_DISPLAY, integer=False, unit=" seconds"
        )

    def set_stale_after_seconds(self, seconds: Any) -> Dict[str, Any]:
        """Set how long a queued delivery may wait before it is dropped."""
        return self._set_number(
            'stale_after_seconds', "Delivery staleness limit", seconds,
            self.MIN_STALE_AFTER, self.MAX_STALE_AFTER, integer=False, unit=" seconds"
        )

    def set_retry_attempts(self, attempts: Any) -> Dict[str, Any]:
        return self._set_number(
            'retry_attempts', "Store retry attempts", attempts,
            self.MIN_RETRY_ATTEMPTS, self.MAX_RETRY_ATTEMPTS, integer=True
        )

    def set_retry_base_delay(self, delay: Any) -> Dict[str, Any]:
        return self._set_number(
            'retry_base_delay', "Store retry delay", delay, 0, 60, integer=False, unit=" seconds"
        )

    def set_leaderboard_limit(self, limit: Any) -> Dict[str, Any]:
        return self._set_number(
            'leaderboard_limit', "Leaderboard size", limit,
            self.MIN_LEADERBOARD_LIMIT, self.MAX_LEADERBOARD_LIMIT, integer=True
        )

    def set_completion_scope(self, scope: Any) -> Dict[str, Any]:
        """
        Set whether a completed quiz blocks only itself or every quiz.

        Args:
            scope: "per_quiz" or "global"
        """
        if scope not in self.COMPLETION_SCOPES:
            return self._reject(
                f"Completion scope must be one of {self.COMPLETION_SCOPES}, got {scope!r}",
                f"Invalid completion scope: {scope}"
            )
        return self._accept(f"Completion scope set to {scope}", completion_scope=scope)

    def set_quiz_directory(self, directory: Any) -> Dict[str, Any]:
        if not isinstance(directory, str) or not directory.strip():
            return self._reject(
                f"Quiz directory must be a non-empty string, got {directory!r}",
                "Directory path cannot be empty"
            )
        return self._accept(f"Quiz directory set to {directory}", quiz_directory=directory)

    def set_database_url(self, url: Any) -> Dict[str, Any]:
        if not isinstance(url, str) or "://" not in url:
            return self._reject(
                f"Database URL must be a SQLAlchemy URL, got {url!r}",
                "Invalid database URL"
            )
        # Never log credentials
        return self._accept(f"Database URL set ({url.split('://', 1)[0]})", database_url=url)

    def set_callback_secret(self, secret: Any) -> Dict[str, Any]:
        if not isinstance(secret, str) or not secret:
            return self._reject("Callback secret must be a non-empty string", "Invalid callback secret")
        return self._accept("Callback secret updated", callback_secret=secret)

    def set_admin_ids(self, admin_ids: Any) -> Dict[str, Any]:
        if not isinstance(admin_ids, list) or not all(
            isinstance(i, int) and not isinstance(i, bool) and i >= 0 for i in admin_ids
        ):
            return self._reject(
                f"Admin ids must be a list of user ids, got {admin_ids!r}",
                "Invalid admin id list"
            )
        return self._accept(f"Admin list set ({len(admin_ids)} admins)", admin_ids=list(admin_ids))

    def is_admin(self, user_id: int) -> bool:
        return user_id in self._settings.admin_ids

    def validate_settings(self) -> Dict[str, Any]:
        """
        Validate current settings and return validation results.

        Returns:
            Dictionary with validation results and any issues found
        """
        validation_result = {
            "valid": True,
            "issues": [],
            "warnings": []
        }
        settings = self._settings

        if not self.MIN_RESULT_DISPLAY <= settings.result_display_seconds <= self.MAX_RESULT_DISPLAY:
            validation_result["issues"].append(
                f"Invalid result display time: {settings.result_display_seconds}"
            )
        if not self.MIN_STALE_AFTER <= settings.stale_after_seconds <= self.MAX_STALE_AFTER:
            validation_result["issues"].append(
                f"Invalid delivery staleness limit: {settings.stale_after_seconds}"
            )
        if not self.MIN_RETRY_ATTEMPTS <= settings.retry_attempts <= self.MAX_RETRY_ATTEMPTS:
            validation_result["issues"].append(f"Invalid retry attempts: {settings.retry_attempts}")
        if not self.MIN_LEADERBOARD_LIMIT <= settings.leaderboard_limit <= self.MAX_LEADERBOARD_LIMIT:
            validation_result["issues"].append(f"Invalid leaderboard size: {settings.leaderboard_limit}")
        if settings.completion_scope not in self.COMPLETION_SCOPES:
            validation_result["issues"].append(f"Invalid completion scope: {settings.completion_scope}")

        if settings.callback_secret == self.DEFAULT_SECRET:
            validation_result["warnings"].append(
                "Callback secret is the default value; set QUIZBOT_CALLBACK_SECRET in production"
            )
        if not settings.admin_ids:
            validation_result["warnings"].append("No admin ids configured; admin commands are disabled")

        validation_result["valid"] = not validation_result["issues"]
        return validation_result

    def get_settings_summary(self) -> str:
        """
        Get a formatted summary of current settings.

        Returns:
            Human-readable string describing current settings
        """
        settings = self._settings
        return (
            f"Quiz Bot Settings:\n"
            f"• Quiz Directory: {settings.quiz_directory}\n"
            f"• Completion Scope: {settings.completion_scope}\n"
            f"• Result Display: {settings.result_display_seconds} seconds\n"
            f"• Leaderboard Size: {settings.leaderboard_limit}\n"
            f"• Delivery Staleness Limit: {settings.stale_after_seconds} seconds\n"
            f"• Store Retries: {settings.retry_attempts} (base delay {settings.retry_base_delay}s)\n"
            f"• Admins: {len(settings.admin_ids)}"
        )
