"""
Quiz engine core logic for the trivia quiz client.
Handles answer evaluation, answer ordering, and question countdown timers.
"""
import random
import asyncio
import logging
import time
from typing import List, Optional, Callable, Any
from .models import Question

# Set up logger for timer operations
logger = logging.getLogger(__name__)


class TimerLifecycleLogger:
    """Structured logging for timer lifecycle events."""

    @staticmethod
    def log_timer_created(timer_key: str, duration: int, tick_interval: float) -> None:
        """Log timer creation event with structured data."""
        logger.info(
            f"Timer lifecycle: CREATED - Timer {timer_key}, Duration {duration} ticks of {tick_interval}s",
            extra={
                'event_type': 'timer_created',
                'timer_key': timer_key,
                'duration': duration,
                'tick_interval': tick_interval,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_timer_update(timer_key: str, remaining_time: int, total_duration: int) -> None:
        """Log timer update events (throttled to avoid spam)."""
        if remaining_time % 5 == 0 or remaining_time <= 3:
            progress_percent = ((total_duration - remaining_time) / total_duration) * 100 if total_duration else 100.0
            logger.debug(
                f"Timer lifecycle: UPDATE - Timer {timer_key}, Remaining {remaining_time} ({progress_percent:.1f}% complete)",
                extra={
                    'event_type': 'timer_update',
                    'timer_key': timer_key,
                    'remaining_time': remaining_time,
                    'total_duration': total_duration,
                    'progress_percent': progress_percent,
                    'timestamp': time.time()
                }
            )

    @staticmethod
    def log_timer_completion(timer_key: str, completion_type: str, total_duration: int) -> None:
        """Log timer completion (natural expiry or cancellation)."""
        logger.info(
            f"Timer lifecycle: COMPLETED - Timer {timer_key}, Type {completion_type}, Duration {total_duration}",
            extra={
                'event_type': 'timer_completed',
                'timer_key': timer_key,
                'completion_type': completion_type,
                'total_duration': total_duration,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_timer_state_transition(timer_key: str, from_state: str, to_state: str, reason: str = None) -> None:
        """Log timer state transitions."""
        logger.debug(
            f"Timer lifecycle: STATE_TRANSITION - Timer {timer_key}, {from_state} -> {to_state}" +
            (f" ({reason})" if reason else ""),
            extra={
                'event_type': 'timer_state_transition',
                'timer_key': timer_key,
                'from_state': from_state,
                'to_state': to_state,
                'reason': reason,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_timer_error(timer_key: str, error_type: str, error_message: str, operation: str) -> None:
        """Log timer-related errors with context."""
        logger.error(
            f"Timer lifecycle: ERROR - Timer {timer_key}, Operation {operation}, Type {error_type}: {error_message}",
            extra={
                'event_type': 'timer_error',
                'timer_key': timer_key,
                'error_type': error_type,
                'error_message': error_message,
                'operation': operation,
                'timestamp': time.time()
            }
        )


class QuizTimer:
    """Countdown timer for a single displayed question."""

    def __init__(self, timer_key: str = None):
        """Initialize the timer."""
        self._task: Optional[asyncio.Task] = None
        self._remaining_time = 0
        self._total_duration = 0
        self._is_cancelled = False
        self._expired = False
        self._timer_key = timer_key

    async def start_countdown(
        self,
        duration: int,
        tick_interval: float,
        update_callback: Callable[[int], Any],
        completion_callback: Callable[[], Any]
    ) -> None:
        """
        Count down from ``duration`` to zero.

        Args:
            duration: Number of ticks before expiry
            tick_interval: Seconds between two ticks
            update_callback: Called after every tick with the remaining ticks
            completion_callback: Called once when the countdown reaches zero;
                never called if the timer is cancelled first
        """
        self._remaining_time = duration
        self._total_duration = duration
        self._is_cancelled = False

        try:
            while self._remaining_time > 0 and not self._is_cancelled:
                await asyncio.sleep(tick_interval)
                if self._is_cancelled:
                    break
                self._remaining_time -= 1
                TimerLifecycleLogger.log_timer_update(
                    self._timer_key,
                    self._remaining_time,
                    self._total_duration
                )
                update_callback(self._remaining_time)

            if self._is_cancelled:
                TimerLifecycleLogger.log_timer_completion(
                    self._timer_key,
                    "cancelled",
                    self._total_duration
                )
            elif not self._expired:
                self._expired = True
                TimerLifecycleLogger.log_timer_completion(
                    self._timer_key,
                    "natural_expiry",
                    self._total_duration
                )
                completion_callback()

        except asyncio.CancelledError:
            self._is_cancelled = True
            TimerLifecycleLogger.log_timer_completion(
                self._timer_key,
                "asyncio_cancelled",
                self._total_duration
            )
            raise
        except Exception as e:
            TimerLifecycleLogger.log_timer_error(
                self._timer_key,
                "countdown_execution_error",
                str(e),
                "start_countdown"
            )
            raise

    def cancel(self) -> None:
        """Cancel the countdown timer."""
        self._is_cancelled = True
        if self._task and not self._task.done():
            self._task.cancel()
            TimerLifecycleLogger.log_timer_state_transition(
                self._timer_key,
                "running",
                "cancelled",
                "task cancelled"
            )

    @property
    def is_cancelled(self) -> bool:
        """Check if timer is cancelled."""
        return self._is_cancelled

    @property
    def is_expired(self) -> bool:
        """Check if the countdown reached zero."""
        return self._expired

    @property
    def remaining_time(self) -> int:
        """Get remaining ticks."""
        return self._remaining_time


class QuizEngine:
    """Core quiz engine that handles answers, ordering, and timing."""

    def __init__(self, rng: Optional[random.Random] = None):
        """
        Initialize the quiz engine.

        Args:
            rng: Random source used to shuffle answers
        """
        self._timers: dict[str, QuizTimer] = {}  # Timer key -> live timer
        self._rng = rng or random.Random()

    def check_answer(self, question: Question, answer: str) -> bool:
        """Return True if ``answer`` is the question's correct answer."""
        return answer == question.correct_answer

    def answer_options(self, question: Question) -> List[str]:
        """
        Correct and incorrect answers in random order.

        Args:
            question: Question to build options for

        Returns:
            New list, the question itself is not modified
        """
        options = question.all_answers
        self._rng.shuffle(options)
        return options

    def start_question_timer(
        self,
        timer_key: str,
        duration: int,
        tick_interval: float,
        update_callback: Callable[[int], Any],
        completion_callback: Callable[[], Any]
    ) -> QuizTimer:
        """
        Start the countdown for a newly displayed question.

        Any timer already running under ``timer_key`` is cancelled first, so
        at most one timer is live per key.

        Args:
            timer_key: Identifier of the session owning the timer
            duration: Number of ticks
            tick_interval: Seconds between ticks
            update_callback: Called after every tick with the remaining ticks
            completion_callback: Called once on expiry

        Returns:
            The started timer

        Raises:
            RuntimeError: If no event loop is running
        """
        self.cancel_timer(timer_key)

        timer = QuizTimer(timer_key)
        timer._task = asyncio.get_running_loop().create_task(
            timer.start_countdown(duration, tick_interval, update_callback, completion_callback)
        )
        timer._task.add_done_callback(lambda task: self._on_timer_done(timer_key, timer, task))
        self._timers[timer_key] = timer

        TimerLifecycleLogger.log_timer_created(timer_key, duration, tick_interval)
        return timer

    def _on_timer_done(self, timer_key: str, timer: QuizTimer, task: asyncio.Task) -> None:
        if self._timers.get(timer_key) is timer:
            del self._timers[timer_key]

        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            TimerLifecycleLogger.log_timer_error(
                timer_key,
                "execution_error",
                str(error),
                "timer_task_execution"
            )

    def cancel_timer(self, timer_key: str) -> bool:
        """
        Cancel the timer for a key.

        Args:
            timer_key: Identifier of the session owning the timer

        Returns:
            True if a live timer was cancelled, False if there was none
        """
        timer = self._timers.pop(timer_key, None)
        if timer is None:
            logger.debug(
                f"No active timer found for {timer_key}",
                extra={
                    'event_type': 'timer_cancel_no_timer',
                    'timer_key': timer_key,
                    'timestamp': time.time()
                }
            )
            return False

        timer.cancel()
        return True

    def cancel_all(self) -> int:
        """Cancel every live timer, returning how many were cancelled."""
        keys = list(self._timers)
        for key in keys:
            self.cancel_timer(key)
        return len(keys)

    def get_timer_status(self, timer_key: str) -> Optional[dict]:
        """
        Get the status of a timer.

        Returns:
            Dictionary with timer status or None if no active timer
        """
        if timer_key in self._timers:
            timer = self._timers[timer_key]
            return {
                'remaining_time': timer.remaining_time,
                'is_cancelled': timer.is_cancelled,
                'is_expired': timer.is_expired
            }
        return None
