"""
Core data models for the trivia quiz client.
"""
import html
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple


class GameState(Enum):
    """Screens a quiz session can be on."""
    HOME = "home"
    CATEGORY_SELECTION = "category_selection"
    DIFFICULTY_SELECTION = "difficulty_selection"
    PLAYING = "playing"
    FINISHED = "finished"
    SCOREBOARD = "scoreboard"


@dataclass(frozen=True)
class Question:
    """A single trivia question as returned by the question source."""
    category: str
    type: str
    difficulty: str
    question: str
    correct_answer: str
    incorrect_answers: Tuple[str, ...] = ()

    def __post_init__(self):
        # Lists from JSON are frozen into tuples; the correct answer is
        # never repeated among the wrong ones.
        incorrect = tuple(a for a in self.incorrect_answers if a != self.correct_answer)
        object.__setattr__(self, 'incorrect_answers', incorrect)

    @property
    def all_answers(self) -> List[str]:
        """Correct answer followed by the incorrect ones, unshuffled."""
        return [self.correct_answer, *self.incorrect_answers]

    @classmethod
    def from_api_dict(cls, data: dict) -> "Question":
        """
        Build a question from one entry of an API ``results`` array.

        Text fields are HTML-entity decoded.

        Raises:
            KeyError: If a required field is missing
            TypeError: If ``incorrect_answers`` is not a list
        """
        incorrect = data["incorrect_answers"]
        if not isinstance(incorrect, list):
            raise TypeError("'incorrect_answers' must be a list")

        return cls(
            category=html.unescape(str(data["category"])),
            type=str(data["type"]),
            difficulty=str(data["difficulty"]),
            question=html.unescape(str(data["question"])),
            correct_answer=html.unescape(str(data["correct_answer"])),
            incorrect_answers=tuple(html.unescape(str(a)) for a in incorrect),
        )


@dataclass(frozen=True)
class QuestionRequest:
    """Filters for a question batch fetch."""
    amount: int = 10
    category: Optional[int] = None
    difficulty: Optional[str] = None
    type: Optional[str] = None

    def to_params(self) -> dict:
        """Query parameters, leaving out unset filters."""
        params = {"amount": self.amount}
        if self.category is not None:
            params["category"] = self.category
        if self.difficulty is not None:
            params["difficulty"] = self.difficulty
        if self.type is not None:
            params["type"] = self.type
        return params


@dataclass(frozen=True)
class QuestionBatch:
    """A question source response."""
    response_code: int
    results: Tuple[Question, ...] = ()

    @property
    def is_success(self) -> bool:
        return self.response_code == 0 and len(self.results) > 0


@dataclass(frozen=True)
class ScoreEntry:
    """A saved result on the leaderboard."""
    username: str
    score: int
    category: str = ""
    difficulty: str = ""
    timestamp: int = 0

    def to_dict(self) -> dict:
        return {
            "username": self.username,
            "score": self.score,
            "category": self.category,
            "difficulty": self.difficulty,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ScoreEntry":
        return cls(
            username=str(data["username"]),
            score=int(data["score"]),
            category=str(data.get("category", "")),
            difficulty=str(data.get("difficulty", "")),
            timestamp=int(data.get("timestamp", 0)),
        )


@dataclass
class QuizSettings:
    """Configuration settings for quiz sessions."""
    timer_duration: int = 15
    tick_interval: float = 1.0
    answer_reveal_delay: float = 1.5
    timeout_reveal_delay: float = 1.0
    batch_size: int = 10
    api_base_url: str = "https://opentdb.com/"
    request_timeout: float = 10.0
    score_file: str = "./data/scores.json"
    translation_enabled: bool = True
    target_language: str = "fr"
    translation_timeout: float = 30.0
    top_scores_count: int = 3


@dataclass(frozen=True)
class Session:
    """
    Immutable snapshot of a quiz session.

    A new snapshot replaces the previous one on every event; presentation
    only ever reads these.
    """
    state: GameState = GameState.HOME
    selected_category: Optional[int] = None
    selected_difficulty: Optional[str] = None
    questions: Tuple[Question, ...] = ()
    current_index: int = 0
    score: int = 0
    time_remaining: int = 15
    loading: bool = False
    error: Optional[str] = None
    answered: bool = False
    selected_answer: Optional[str] = None
    timed_out: bool = False
    validation_error: Optional[str] = None
    scores: Tuple[ScoreEntry, ...] = field(default_factory=tuple)

    @property
    def current_question(self) -> Optional[Question]:
        if 0 <= self.current_index < len(self.questions):
            return self.questions[self.current_index]
        return None

    @property
    def total_questions(self) -> int:
        return len(self.questions)

    @property
    def is_last_question(self) -> bool:
        return bool(self.questions) and self.current_index >= len(self.questions) - 1
