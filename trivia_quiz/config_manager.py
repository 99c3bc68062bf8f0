"""
Configuration manager for trivia quiz settings.
"""
import logging
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, Optional

from .models import QuizSettings


class ConfigManager:
    """Manages quiz, API, score and translation settings."""

    # Default configuration values
    DEFAULT_TIMER_DURATION = 15
    DEFAULT_BATCH_SIZE = 10
    DEFAULT_API_BASE_URL = "https://opentdb.com/"
    DEFAULT_SCORE_FILE = "./data/scores.json"
    DEFAULT_TARGET_LANGUAGE = "fr"

    # Validation limits
    MIN_TIMER_DURATION = 5
    MAX_TIMER_DURATION = 300  # 5 minutes
    MIN_BATCH_SIZE = 1
    MAX_BATCH_SIZE = 50  # API limit per request
    MAX_REVEAL_DELAY = 10.0
    MIN_REQUEST_TIMEOUT = 1.0
    MAX_REQUEST_TIMEOUT = 60.0
    MIN_TRANSLATION_TIMEOUT = 1.0
    MAX_TRANSLATION_TIMEOUT = 120.0

    def __init__(self):
        """Initialize ConfigManager with default settings."""
        self.logger = logging.getLogger(__name__)
        self._settings = QuizSettings()

    def get_quiz_settings(self) -> QuizSettings:
        """
        Get current quiz settings.

        Returns:
            Copy of the current QuizSettings
        """
        return replace(self._settings)

    def _ok(self, message: str, user_message: str) -> Dict[str, Any]:
        self.logger.info(message)
        return {'success': True, 'message': message, 'user_message': user_message}

    def _fail(self, error: str, user_message: str) -> Dict[str, Any]:
        self.logger.error(error)
        return {'success': False, 'error': error, 'user_message': user_message}

    def set_timer_duration(self, duration: int) -> Dict[str, Any]:
        """
        Set the countdown length for each question.

        Args:
            duration: Timer duration in ticks (seconds)

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        if not isinstance(duration, int) or isinstance(duration, bool):
            return self._fail(
                f"Timer duration must be an integer, got {type(duration).__name__}",
                f"❌ Invalid input: Expected a number, got {type(duration).__name__}"
            )

        if duration < self.MIN_TIMER_DURATION:
            return self._fail(
                f"Timer duration must be at least {self.MIN_TIMER_DURATION} seconds",
                f"❌ Timer too short: Minimum is {self.MIN_TIMER_DURATION} seconds"
            )

        if duration > self.MAX_TIMER_DURATION:
            return self._fail(
                f"Timer duration cannot exceed {self.MAX_TIMER_DURATION} seconds",
                f"❌ Timer too long: Maximum is {self.MAX_TIMER_DURATION} seconds"
            )

        self._settings.timer_duration = duration
        return self._ok(
            f"Timer duration set to {duration} seconds",
            f"✅ Timer set to {duration} seconds"
        )

    def set_batch_size(self, size: int) -> Dict[str, Any]:
        """
        Set how many questions are fetched per quiz.

        Args:
            size: Number of questions per batch

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        if not isinstance(size, int) or isinstance(size, bool):
            return self._fail(
                f"Batch size must be an integer, got {type(size).__name__}",
                f"❌ Invalid input: Expected a number, got {type(size).__name__}"
            )

        if not self.MIN_BATCH_SIZE <= size <= self.MAX_BATCH_SIZE:
            return self._fail(
                f"Batch size must be between {self.MIN_BATCH_SIZE} and {self.MAX_BATCH_SIZE}",
                f"❌ Question count must be between {self.MIN_BATCH_SIZE} and {self.MAX_BATCH_SIZE}"
            )

        self._settings.batch_size = size
        return self._ok(f"Batch size set to {size}", f"✅ Quizzes will have {size} questions")

    def set_tick_interval(self, interval: float) -> Dict[str, Any]:
        """Set the number of seconds between two timer ticks."""
        if not isinstance(interval, (int, float)) or isinstance(interval, bool) or interval <= 0:
            return self._fail(
                f"Tick interval must be a positive number, got {interval!r}",
                "❌ Tick interval must be a positive number of seconds"
            )

        self._settings.tick_interval = float(interval)
        return self._ok(f"Tick interval set to {interval}s", f"✅ Timer ticks every {interval}s")

    def set_reveal_delays(self, answer_delay: float, timeout_delay: float) -> Dict[str, Any]:
        """
        Set the grace delays shown before advancing to the next question.

        Args:
            answer_delay: Seconds after an answer is selected
            timeout_delay: Seconds after the timer expires
        """
        for name, value in (("Answer reveal delay", answer_delay), ("Timeout reveal delay", timeout_delay)):
            if not isinstance(value, (int, float)) or isinstance(value, bool):
                return self._fail(
                    f"{name} must be a number, got {type(value).__name__}",
                    f"❌ {name} must be a number"
                )
            if value < 0 or value > self.MAX_REVEAL_DELAY:
                return self._fail(
                    f"{name} must be between 0 and {self.MAX_REVEAL_DELAY} seconds",
                    f"❌ {name} must be between 0 and {self.MAX_REVEAL_DELAY} seconds"
                )

        self._settings.answer_reveal_delay = float(answer_delay)
        self._settings.timeout_reveal_delay = float(timeout_delay)
        return self._ok(
            f"Reveal delays set to {answer_delay}s (answer) and {timeout_delay}s (timeout)",
            "✅ Reveal delays updated"
        )

    def set_api_settings(self, base_url: str, request_timeout: Optional[float] = None) -> Dict[str, Any]:
        """Set the trivia API root URL and optional request timeout."""
        if not isinstance(base_url, str) or not base_url.strip():
            return self._fail("API base URL cannot be empty", "❌ API URL cannot be empty")

        if not base_url.startswith(("http://", "https://")):
            return self._fail(
                f"API base URL must start with http:// or https://, got {base_url}",
                f"❌ Invalid API URL: {base_url}"
            )

        if request_timeout is not None:
            if (not isinstance(request_timeout, (int, float)) or isinstance(request_timeout, bool)
                    or not self.MIN_REQUEST_TIMEOUT <= request_timeout <= self.MAX_REQUEST_TIMEOUT):
                return self._fail(
                    f"Request timeout must be between {self.MIN_REQUEST_TIMEOUT} and {self.MAX_REQUEST_TIMEOUT} seconds",
                    "❌ Invalid request timeout"
                )
            self._settings.request_timeout = float(request_timeout)

        self._settings.api_base_url = base_url
        return self._ok(f"API base URL set to {base_url}", f"✅ Using trivia API at {base_url}")

    def set_score_file(self, path: str) -> Dict[str, Any]:
        """
        Set the JSON file the leaderboard is stored in.

        Args:
            path: Path to the score file

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        if not isinstance(path, str):
            return self._fail(
                f"Score file must be a string, got {type(path).__name__}",
                f"❌ Invalid input: Expected a path string, got {type(path).__name__}"
            )

        if not path.strip():
            return self._fail("Score file path cannot be empty", "❌ Score file path cannot be empty")

        try:
            normalized_path = str(Path(path).resolve())
        except (OSError, ValueError) as e:
            return self._fail(f"Invalid score file path: {e}", f"❌ Invalid path format: {path}")

        system_dirs = ['/bin', '/usr', '/etc', '/sys', '/proc', 'C:\\Windows', 'C:\\Program Files']
        if any(normalized_path.startswith(sys_dir) for sys_dir in system_dirs):
            return self._fail(
                f"Cannot use system directory: {normalized_path}",
                f"❌ Cannot use system directory: {path}"
            )

        self._settings.score_file = path
        return self._ok(f"Score file set to {path}", f"✅ Scores will be saved to {path}")

    def set_translation(
        self,
        enabled: bool,
        target_language: Optional[str] = None,
        timeout: Optional[float] = None
    ) -> Dict[str, Any]:
        """
        Enable or disable translation, optionally changing its language and
        the time allowed for translating one question batch.
        """
        if not isinstance(enabled, bool):
            return self._fail(
                f"Translation flag must be a boolean, got {type(enabled).__name__}",
                f"❌ Invalid input: Expected true/false, got {type(enabled).__name__}"
            )

        if target_language is not None:
            if not isinstance(target_language, str) or not target_language.strip():
                return self._fail("Target language cannot be empty", "❌ Target language cannot be empty")

        if timeout is not None:
            if (not isinstance(timeout, (int, float)) or isinstance(timeout, bool)
                    or not self.MIN_TRANSLATION_TIMEOUT <= timeout <= self.MAX_TRANSLATION_TIMEOUT):
                return self._fail(
                    f"Translation timeout must be between {self.MIN_TRANSLATION_TIMEOUT} and "
                    f"{self.MAX_TRANSLATION_TIMEOUT} seconds",
                    "❌ Invalid translation timeout"
                )
            self._settings.translation_timeout = float(timeout)

        if target_language is not None:
            self._settings.target_language = target_language.strip().lower()

        self._settings.translation_enabled = enabled
        state = "enabled" if enabled else "disabled"
        return self._ok(
            f"Translation {state} (target={self._settings.target_language})",
            f"✅ Translation {state}"
        )

    def load_from_dict(self, config: Dict[str, Any]) -> Dict[str, Any]:
        """
        Apply settings from a parsed config.json.

        Invalid values are reported and left at their previous value.

        Returns:
            Dictionary with overall success and the list of errors
        """
        errors = []

        def apply(result):
            if not result['success']:
                errors.append(result['error'])

        quiz_config = config.get('quiz', {})
        if 'timer_duration' in quiz_config:
            apply(self.set_timer_duration(quiz_config['timer_duration']))
        if 'batch_size' in quiz_config:
            apply(self.set_batch_size(quiz_config['batch_size']))
        if 'tick_interval' in quiz_config:
            apply(self.set_tick_interval(quiz_config['tick_interval']))
        if 'answer_reveal_delay' in quiz_config or 'timeout_reveal_delay' in quiz_config:
            apply(self.set_reveal_delays(
                quiz_config.get('answer_reveal_delay', self._settings.answer_reveal_delay),
                quiz_config.get('timeout_reveal_delay', self._settings.timeout_reveal_delay)
            ))

        api_config = config.get('api', {})
        if 'base_url' in api_config or 'request_timeout' in api_config:
            apply(self.set_api_settings(
                api_config.get('base_url', self._settings.api_base_url),
                api_config.get('request_timeout')
            ))

        scores_config = config.get('scores', {})
        if 'score_file' in scores_config:
            apply(self.set_score_file(scores_config['score_file']))
        if 'top_scores_count' in scores_config:
            count = scores_config['top_scores_count']
            if isinstance(count, int) and not isinstance(count, bool) and count > 0:
                self._settings.top_scores_count = count
            else:
                errors.append(f"Invalid top_scores_count: {count!r}")

        translation_config = config.get('translation', {})
        if translation_config:
            apply(self.set_translation(
                translation_config.get('enabled', self._settings.translation_enabled),
                translation_config.get('target_language'),
                translation_config.get('timeout')
            ))

        if errors:
            self.logger.warning(f"Configuration applied with {len(errors)} errors")
        else:
            self.logger.info("Configuration applied successfully")

        return {'success': not errors, 'errors': errors}

    def validate_settings(self) -> Dict[str, Any]:
        """
        Validate current settings and return validation results.

        Returns:
            Dictionary with validation results and any issues found
        """
        issues = []
        s = self._settings

        if not self.MIN_TIMER_DURATION <= s.timer_duration <= self.MAX_TIMER_DURATION:
            issues.append(f"Invalid timer duration: {s.timer_duration}")

        if not self.MIN_BATCH_SIZE <= s.batch_size <= self.MAX_BATCH_SIZE:
            issues.append(f"Invalid batch size: {s.batch_size}")

        if s.tick_interval <= 0:
            issues.append(f"Invalid tick interval: {s.tick_interval}")

        if not s.score_file or not s.score_file.strip():
            issues.append(f"Invalid score file: {s.score_file}")

        return {"valid": not issues, "issues": issues}

    def get_settings_summary(self) -> str:
        """
        Get a formatted summary of current settings.

        Returns:
            Human-readable string describing current settings
        """
        s = self._settings
        translation = f"{s.target_language}" if s.translation_enabled else "off"
        return (
            f"Quiz Settings:\n"
            f"• Questions: {s.batch_size}\n"
            f"• Timer: {s.timer_duration} seconds\n"
            f"• Translation: {translation}\n"
            f"• Score File: {s.score_file}"
        )
