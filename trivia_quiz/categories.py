"""
Category, difficulty and question type identifiers understood by the
Open Trivia Database.
"""
from typing import Dict, List, Optional

CATEGORY_GENERAL_KNOWLEDGE = 9
CATEGORY_BOOKS = 10
CATEGORY_FILM = 11
CATEGORY_MUSIC = 12
CATEGORY_TELEVISION = 14
CATEGORY_VIDEO_GAMES = 15
CATEGORY_SCIENCE_NATURE = 17
CATEGORY_COMPUTERS = 18
CATEGORY_MATHEMATICS = 19
CATEGORY_SPORTS = 21
CATEGORY_GEOGRAPHY = 22
CATEGORY_HISTORY = 23
CATEGORY_POLITICS = 24
CATEGORY_ART = 25
CATEGORY_CELEBRITIES = 26
CATEGORY_ANIMALS = 27

CATEGORIES: Dict[int, str] = {
    CATEGORY_GENERAL_KNOWLEDGE: "General Knowledge",
    CATEGORY_BOOKS: "Books",
    CATEGORY_FILM: "Film",
    CATEGORY_MUSIC: "Music",
    CATEGORY_TELEVISION: "Television",
    CATEGORY_VIDEO_GAMES: "Video Games",
    CATEGORY_SCIENCE_NATURE: "Science & Nature",
    CATEGORY_COMPUTERS: "Computers",
    CATEGORY_MATHEMATICS: "Mathematics",
    CATEGORY_SPORTS: "Sports",
    CATEGORY_GEOGRAPHY: "Geography",
    CATEGORY_HISTORY: "History",
    CATEGORY_POLITICS: "Politics",
    CATEGORY_ART: "Art",
    CATEGORY_CELEBRITIES: "Celebrities",
    CATEGORY_ANIMALS: "Animals",
}

# Categories offered on the selection screen, in display order
SELECTABLE_CATEGORIES: List[int] = [
    CATEGORY_GENERAL_KNOWLEDGE,
    CATEGORY_SCIENCE_NATURE,
    CATEGORY_COMPUTERS,
    CATEGORY_HISTORY,
    CATEGORY_GEOGRAPHY,
    CATEGORY_SPORTS,
    CATEGORY_FILM,
    CATEGORY_MUSIC,
]

DIFFICULTY_EASY = "easy"
DIFFICULTY_MEDIUM = "medium"
DIFFICULTY_HARD = "hard"

DIFFICULTIES: Dict[str, str] = {
    DIFFICULTY_EASY: "Easy",
    DIFFICULTY_MEDIUM: "Medium",
    DIFFICULTY_HARD: "Hard",
}

TYPE_MULTIPLE = "multiple"
TYPE_BOOLEAN = "boolean"

QUESTION_TYPES = (TYPE_MULTIPLE, TYPE_BOOLEAN)


def category_display_name(category_id: Optional[int]) -> str:
    """English display name for a category id, or an empty string."""
    if category_id is None:
        return ""
    return CATEGORIES.get(category_id, f"Category {category_id}")


def difficulty_display_name(difficulty: Optional[str]) -> str:
    """English display name for a difficulty id, or an empty string."""
    if difficulty is None:
        return ""
    return DIFFICULTIES.get(difficulty, difficulty.capitalize())
