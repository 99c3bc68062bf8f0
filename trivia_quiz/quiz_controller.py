"""
Quiz session controller for the trivia quiz client.
Drives one session through home, selection, play, results and leaderboard.
"""
import logging
import asyncio
import time
from dataclasses import replace
from enum import Enum
from typing import Any, Callable, List, Optional, Set

from .categories import category_display_name, difficulty_display_name
from .models import GameState, QuestionRequest, QuizSettings, ScoreEntry, Session
from .question_source import QuestionSourceError, describe_response_code
from .quiz_engine import QuizEngine

INVALID_RESPONSE_MESSAGE = "Invalid response from the trivia API"
EMPTY_USERNAME_MESSAGE = "Please enter a name to save your score"
SCORE_STORE_MISSING_MESSAGE = "Scores cannot be saved right now"

Listener = Callable[[Session], Any]


class SessionEvent(Enum):
    """Intents the presentation layer can send to a session."""
    PLAY = "play"
    VIEW_SCOREBOARD = "view_scoreboard"
    SELECT_CATEGORY = "select_category"
    BACK = "back"
    SELECT_DIFFICULTY = "select_difficulty"
    RETRY = "retry"
    SELECT_ANSWER = "select_answer"
    NEXT_QUESTION = "next_question"
    SAVE_SCORE = "save_score"
    PLAY_AGAIN = "play_again"
    RESET_TO_HOME = "reset_to_home"


class QuizController:
    """
    Owns a single quiz session and its state machine.

    Every transition is a synchronous method that replaces the immutable
    Session snapshot and notifies subscribers. The question fetch, the
    countdown and the pause before the next question run as asyncio tasks;
    their results are dropped once the request or question they belong to
    is no longer current.
    """

    def __init__(
        self,
        question_source,
        translator=None,
        score_store=None,
        settings: Optional[QuizSettings] = None,
        session_key: str = "default",
        quiz_engine: Optional[QuizEngine] = None
    ):
        """
        Initialize the quiz controller.

        Args:
            question_source: Object with ``async fetch(QuestionRequest)``
            translator: TranslationAdapter, or None to show questions as fetched
            score_store: ScoreStore used by the leaderboard
            settings: Quiz settings, defaults are used if None
            session_key: Identifier used for the session's timer and logs
            quiz_engine: Engine providing timers and answer checking
        """
        self.logger = logging.getLogger(__name__)
        self.question_source = question_source
        self.translator = translator
        self.score_store = score_store
        self.settings = settings or QuizSettings()
        self.session_key = session_key
        self.quiz_engine = quiz_engine or QuizEngine()

        self._session = Session(time_remaining=self.settings.timer_duration)
        self._listeners: List[Listener] = []
        self._tasks: Set[asyncio.Task] = set()
        self._pending_advance: Optional[asyncio.Task] = None
        self._last_request: Optional[QuestionRequest] = None
        self._answer_options: List[str] = []

        # Bumped whenever an in-flight result must no longer be applied
        self._fetch_token = 0
        self._question_token = 0

        self.logger.info(f"QuizController initialized for session {session_key}")

    # ----------------------------------------------------------------- state

    @property
    def session(self) -> Session:
        """Current session snapshot."""
        return self._session

    @property
    def answer_options(self) -> List[str]:
        """Shuffled answers for the current question."""
        return list(self._answer_options)

    @property
    def last_request(self) -> Optional[QuestionRequest]:
        """Most recent question request, re-sent by retry."""
        return self._last_request

    @property
    def pending_tasks(self) -> Set[asyncio.Task]:
        """Background tasks that have not finished yet."""
        return set(self._tasks)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """
        Register a callback invoked with every new snapshot.

        Returns:
            A function that removes the listener again
        """
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _set_session(self, session: Session) -> None:
        self._session = session
        for listener in list(self._listeners):
            try:
                listener(session)
            except Exception:
                self.logger.exception(f"Session listener failed for session {self.session_key}")

    def _update(self, **changes) -> None:
        self._set_session(replace(self._session, **changes))

    def _transition(self, to_state: GameState, event: str, **changes) -> None:
        from_state = self._session.state
        self._update(state=to_state, **changes)
        self.logger.info(
            f"Session {self.session_key}: {from_state.value} -> {to_state.value} ({event})",
            extra={
                'event_type': 'session_transition',
                'session_key': self.session_key,
                'from_state': from_state.value,
                'to_state': to_state.value,
                'event': event,
                'timestamp': time.time()
            }
        )

    def _ignore(self, event: str) -> bool:
        self.logger.debug(
            f"Ignoring {event} in state {self._session.state.value} for session {self.session_key}",
            extra={
                'event_type': 'session_event_ignored',
                'session_key': self.session_key,
                'state': self._session.state.value,
                'event': event
            }
        )
        return False

    def _fresh_session(self) -> Session:
        return Session(time_remaining=self.settings.timer_duration)

    # ------------------------------------------------------------ navigation

    def play(self) -> bool:
        """Home -> category selection."""
        if self._session.state != GameState.HOME:
            return self._ignore("play")
        self._transition(GameState.CATEGORY_SELECTION, "play")
        return True

    def view_scoreboard(self) -> bool:
        """Home -> scoreboard, loading the saved scores."""
        if self._session.state != GameState.HOME:
            return self._ignore("view_scoreboard")
        self._transition(GameState.SCOREBOARD, "view_scoreboard", scores=self._load_scores())
        return True

    def select_category(self, category_id: int) -> bool:
        """Store the chosen category and move to difficulty selection."""
        if self._session.state != GameState.CATEGORY_SELECTION:
            return self._ignore("select_category")
        self._transition(
            GameState.DIFFICULTY_SELECTION,
            "select_category",
            selected_category=category_id
        )
        return True

    def back(self) -> bool:
        """Go back one screen from the selection screens or the scoreboard."""
        state = self._session.state
        if state == GameState.CATEGORY_SELECTION:
            self._transition(
                GameState.HOME, "back",
                selected_category=None,
                selected_difficulty=None
            )
            return True
        if state == GameState.DIFFICULTY_SELECTION:
            self._transition(GameState.CATEGORY_SELECTION, "back")
            return True
        if state == GameState.SCOREBOARD:
            self._transition(GameState.HOME, "back")
            return True
        return self._ignore("back")

    def select_difficulty(self, difficulty: str) -> bool:
        """
        Store the chosen difficulty, enter play and start fetching questions.

        The fetch runs in the background; the session shows ``loading``
        until it completes.
        """
        if self._session.state != GameState.DIFFICULTY_SELECTION:
            return self._ignore("select_difficulty")

        request = self._begin_quiz(self._session.selected_category, difficulty, "select_difficulty")
        self._spawn(self._fetch_questions(request, self._fetch_token))
        return True

    async def start_quiz(self, category: Optional[int] = None, difficulty: Optional[str] = None) -> None:
        """
        Start a quiz and wait until its questions are fetched.

        Category and difficulty are passed to the question source as given.
        Failures are reported through ``session.error``, never raised.
        """
        request = self._begin_quiz(category, difficulty, "start_quiz")
        await self._fetch_questions(request, self._fetch_token)

    def retry(self) -> bool:
        """Re-issue the last question request after a failed fetch."""
        s = self._session
        if s.state != GameState.PLAYING or s.error is None or self._last_request is None:
            return self._ignore("retry")

        self._fetch_token += 1
        self._update(loading=True, error=None, questions=(), current_index=0)
        self.logger.info(f"Retrying question fetch for session {self.session_key}")
        self._spawn(self._fetch_questions(self._last_request, self._fetch_token))
        return True

    def play_again(self) -> bool:
        """Finished -> home with a cleared session."""
        if self._session.state != GameState.FINISHED:
            return self._ignore("play_again")
        self.reset_to_home()
        return True

    def reset_to_home(self) -> bool:
        """Abandon whatever is running and return to a fresh home screen."""
        from_state = self._session.state
        self._stop_question()
        self._fetch_token += 1
        self._last_request = None
        self._set_session(self._fresh_session())
        self.logger.info(
            f"Session {self.session_key}: {from_state.value} -> home (reset_to_home)",
            extra={
                'event_type': 'session_transition',
                'session_key': self.session_key,
                'from_state': from_state.value,
                'to_state': GameState.HOME.value,
                'event': 'reset_to_home',
                'timestamp': time.time()
            }
        )
        return True

    # ------------------------------------------------------------ questions

    def _begin_quiz(self, category: Optional[int], difficulty: Optional[str], event: str) -> QuestionRequest:
        self._stop_question()
        self._fetch_token += 1
        self._answer_options = []

        request = QuestionRequest(
            amount=self.settings.batch_size,
            category=category,
            difficulty=difficulty
        )
        self._last_request = request

        self._transition(
            GameState.PLAYING,
            event,
            selected_category=category,
            selected_difficulty=difficulty,
            questions=(),
            current_index=0,
            score=0,
            time_remaining=self.settings.timer_duration,
            loading=True,
            error=None,
            answered=False,
            selected_answer=None,
            timed_out=False,
            validation_error=None
        )
        return request

    def _is_current_fetch(self, token: int) -> bool:
        return token == self._fetch_token and self._session.state == GameState.PLAYING

    def _discard_fetch(self, token: int) -> None:
        self.logger.info(
            f"Discarding stale question batch for session {self.session_key}",
            extra={
                'event_type': 'stale_fetch_discarded',
                'session_key': self.session_key,
                'fetch_token': token,
                'current_token': self._fetch_token
            }
        )

    async def _fetch_questions(self, request: QuestionRequest, token: int) -> None:
        try:
            batch = await self.question_source.fetch(request)
        except QuestionSourceError as e:
            if not self._is_current_fetch(token):
                self._discard_fetch(token)
                return
            self._fail_fetch(f"Error: {e}")
            return
        except Exception as e:
            self.logger.error(f"Unexpected error fetching questions for session {self.session_key}: {e}",
                              exc_info=True)
            if not self._is_current_fetch(token):
                self._discard_fetch(token)
                return
            self._fail_fetch(f"Error: {e}")
            return

        if not self._is_current_fetch(token):
            self._discard_fetch(token)
            return

        if batch.response_code != 0:
            self._fail_fetch(describe_response_code(batch.response_code))
            return

        if not batch.results:
            self._fail_fetch(INVALID_RESPONSE_MESSAGE)
            return

        questions = await self._translate(batch.results)

        if not self._is_current_fetch(token):
            self._discard_fetch(token)
            return

        self._update(questions=tuple(questions), current_index=0, loading=False, error=None)
        self.logger.info(f"Loaded {len(questions)} questions for session {self.session_key}")
        self._show_question(0)

    async def _translate(self, questions) -> list:
        """Translate a batch in a worker thread; the original batch is used on failure or timeout."""
        if self.translator is None or not self.translator.enabled:
            return list(questions)
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self.translator.translate_questions, list(questions)),
                self.settings.translation_timeout
            )
        except asyncio.TimeoutError:
            self.logger.warning(
                f"Translation timed out after {self.settings.translation_timeout}s for session "
                f"{self.session_key}, showing untranslated questions"
            )
        except Exception as e:
            self.logger.error(f"Translation failed for session {self.session_key}: {e}", exc_info=True)
        return list(questions)

    def _fail_fetch(self, message: str) -> None:
        self.logger.warning(f"Question fetch failed for session {self.session_key}: {message}")
        self._update(loading=False, error=message, questions=(), current_index=0)

    def _show_question(self, index: int) -> None:
        self._question_token += 1
        token = self._question_token
        question = self._session.questions[index]
        self._answer_options = self.quiz_engine.answer_options(question)

        self._update(
            current_index=index,
            time_remaining=self.settings.timer_duration,
            answered=False,
            selected_answer=None,
            timed_out=False
        )

        try:
            self.quiz_engine.start_question_timer(
                self.session_key,
                self.settings.timer_duration,
                self.settings.tick_interval,
                lambda remaining: self._on_timer_tick(token, remaining),
                lambda: self._on_timer_expired(token)
            )
        except RuntimeError:
            self.logger.warning(f"No running event loop, question {index + 1} shown without a timer")

    def _stop_question(self) -> None:
        self._question_token += 1
        self._cancel_pending_advance()
        self.quiz_engine.cancel_timer(self.session_key)

    def _on_timer_tick(self, token: int, remaining: int) -> None:
        if token != self._question_token or self._session.answered:
            return
        self._update(time_remaining=max(0, min(remaining, self.settings.timer_duration)))

    def _on_timer_expired(self, token: int) -> None:
        if token != self._question_token or self._session.answered:
            self.logger.debug(f"Ignoring late timer expiry for session {self.session_key}")
            return

        self._update(answered=True, timed_out=True, time_remaining=0)
        self.logger.info(
            f"Time ran out on question {self._session.current_index + 1} for session {self.session_key}",
            extra={
                'event_type': 'question_timed_out',
                'session_key': self.session_key,
                'question_index': self._session.current_index
            }
        )
        self._schedule_advance(token, self.settings.timeout_reveal_delay)

    def select_answer(self, answer: str) -> bool:
        """
        Answer the current question.

        Only the first answer for a question counts, and not after the
        timer has expired.

        Returns:
            True if the answer was accepted and correct, False otherwise
        """
        s = self._session
        question = s.current_question
        if s.state != GameState.PLAYING or s.loading or s.error is not None or question is None:
            return self._ignore("select_answer")
        if s.answered:
            self.logger.debug(f"Question {s.current_index + 1} already answered for session {self.session_key}")
            return False

        correct = self.quiz_engine.check_answer(question, answer)
        self.quiz_engine.cancel_timer(self.session_key)
        self._update(
            answered=True,
            selected_answer=answer,
            score=s.score + 1 if correct else s.score
        )
        self.logger.info(
            f"Answer {'correct' if correct else 'wrong'} on question {s.current_index + 1} "
            f"for session {self.session_key}",
            extra={
                'event_type': 'answer_selected',
                'session_key': self.session_key,
                'question_index': s.current_index,
                'correct': correct
            }
        )
        self._schedule_advance(self._question_token, self.settings.answer_reveal_delay)
        return correct

    def next_question(self) -> bool:
        """
        Move to the next question, or to the results after the last one.

        Cancels the countdown and any scheduled advance for the current
        question.
        """
        s = self._session
        if s.state != GameState.PLAYING or not s.questions:
            return self._ignore("next_question")

        self._stop_question()

        if s.is_last_question:
            self._answer_options = []
            self._transition(GameState.FINISHED, "next_question", answered=True)
            self.logger.info(
                f"Quiz finished for session {self.session_key}: {s.score}/{s.total_questions}"
            )
        else:
            self._show_question(s.current_index + 1)
        return True

    def _schedule_advance(self, token: int, delay: float) -> None:
        self._cancel_pending_advance()
        self._pending_advance = self._spawn(self._advance_after(token, delay))

    async def _advance_after(self, token: int, delay: float) -> None:
        await asyncio.sleep(delay)
        if token != self._question_token or self._session.state != GameState.PLAYING:
            return
        self._pending_advance = None
        self.next_question()

    def _cancel_pending_advance(self) -> None:
        if self._pending_advance is not None and not self._pending_advance.done():
            self._pending_advance.cancel()
        self._pending_advance = None

    # -------------------------------------------------------------- scores

    def save_score(self, username: str) -> bool:
        """
        Save the finished session's score under ``username``.

        A blank name is rejected with ``validation_error`` and the session
        stays on the results screen. On success the scoreboard is shown.
        """
        s = self._session
        if s.state != GameState.FINISHED:
            return self._ignore("save_score")

        if username is None or not username.strip():
            self._update(validation_error=EMPTY_USERNAME_MESSAGE)
            return False

        entry = ScoreEntry(
            username=username.strip(),
            score=s.score,
            category=self._category_label(s.selected_category),
            difficulty=self._difficulty_label(s.selected_difficulty),
            timestamp=int(time.time() * 1000)
        )

        if self.score_store is None:
            self.logger.error(f"No score store configured for session {self.session_key}")
            self._update(error=SCORE_STORE_MISSING_MESSAGE, validation_error=None)
            return False

        try:
            self.score_store.append(entry)
        except OSError as e:
            self.logger.error(f"Failed to save score for session {self.session_key}: {e}")
            self._update(error=f"Could not save score: {e}", validation_error=None)
            return False
        except Exception as e:
            self.logger.error(f"Unexpected error saving score for session {self.session_key}: {e}",
                              exc_info=True)
            self._update(error=f"Could not save score: {e}", validation_error=None)
            return False

        self._transition(
            GameState.SCOREBOARD,
            "save_score",
            validation_error=None,
            error=None,
            scores=self._load_scores()
        )
        return True

    def _load_scores(self) -> tuple:
        if self.score_store is None:
            return ()
        return tuple(self.score_store.list_all())

    def _category_label(self, category_id: Optional[int]) -> str:
        if self.translator is not None:
            return self.translator.category_name(category_id)
        return category_display_name(category_id)

    def _difficulty_label(self, difficulty: Optional[str]) -> str:
        if self.translator is not None:
            return self.translator.translate_label(difficulty)
        return difficulty_display_name(difficulty)

    # ------------------------------------------------------------- plumbing

    def dispatch(self, event: SessionEvent, payload: Any = None) -> bool:
        """
        Apply an event by name.

        Args:
            event: Event to apply
            payload: Category id, difficulty, answer or username for the
                events that take one

        Returns:
            Whatever the matching operation returns
        """
        handlers = {
            SessionEvent.PLAY: lambda: self.play(),
            SessionEvent.VIEW_SCOREBOARD: lambda: self.view_scoreboard(),
            SessionEvent.SELECT_CATEGORY: lambda: self.select_category(payload),
            SessionEvent.BACK: lambda: self.back(),
            SessionEvent.SELECT_DIFFICULTY: lambda: self.select_difficulty(payload),
            SessionEvent.RETRY: lambda: self.retry(),
            SessionEvent.SELECT_ANSWER: lambda: self.select_answer(payload),
            SessionEvent.NEXT_QUESTION: lambda: self.next_question(),
            SessionEvent.SAVE_SCORE: lambda: self.save_score(payload),
            SessionEvent.PLAY_AGAIN: lambda: self.play_again(),
            SessionEvent.RESET_TO_HOME: lambda: self.reset_to_home(),
        }
        return handlers[event]()

    def _spawn(self, coro) -> Optional[asyncio.Task]:
        try:
            task = asyncio.get_running_loop().create_task(coro)
        except RuntimeError:
            coro.close()
            self.logger.warning(f"No running event loop, background work skipped for session {self.session_key}")
            return None

        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return task

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            self.logger.error(
                f"Background task failed for session {self.session_key}: {error}",
                exc_info=error
            )

    async def wait_for_pending(self) -> None:
        """Wait until the fetch and any scheduled advance have finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def close(self) -> None:
        """Stop the session's timer and background tasks."""
        self._stop_question()
        self._fetch_token += 1
        for task in list(self._tasks):
            task.cancel()
        self._listeners.clear()
        self.logger.info(f"QuizController closed for session {self.session_key}")
