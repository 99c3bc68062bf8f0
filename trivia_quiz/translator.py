"""
Best-effort translation of question text and labels.

Uses Google Translate through deep_translator when online and falls back to
a small built-in glossary when offline. Nothing in here raises to the
caller: on any failure the original text is returned.

Network calls happen only in ``translate`` and the question helpers, which
callers run in worker threads. Labels for categories and difficulties are
answered from the glossary and the cache, which ``prepare`` fills.
"""
import logging
import threading
from dataclasses import replace
from typing import Dict, Iterable, List, Optional

from deep_translator import GoogleTranslator

from .categories import (
    CATEGORIES, DIFFICULTIES, category_display_name, difficulty_display_name,
)
from .models import Question

logger = logging.getLogger(__name__)

SOURCE_LANGUAGE = "en"

# Offline glossary, keyed by lowercase English text
OFFLINE_GLOSSARY: Dict[str, Dict[str, str]] = {
    "fr": {
        "true": "Vrai",
        "false": "Faux",
        "easy": "Facile",
        "medium": "Moyen",
        "hard": "Difficile",
        "general knowledge": "Culture générale",
        "books": "Livres",
        "film": "Cinéma",
        "music": "Musique",
        "television": "Télévision",
        "video games": "Jeux vidéo",
        "science & nature": "Sciences et nature",
        "computers": "Informatique",
        "mathematics": "Mathématiques",
        "sports": "Sports",
        "geography": "Géographie",
        "history": "Histoire",
        "politics": "Politique",
        "art": "Art",
        "celebrities": "Célébrités",
        "animals": "Animaux",
    },
}


class TranslationAdapter:
    """Translates quiz content into the configured target language."""

    def __init__(self, target_language: str = "fr", enabled: bool = True, translator=None):
        """
        Initialize the adapter.

        Args:
            target_language: ISO code of the language to translate into
            enabled: When False every call is the identity (glossary aside)
            translator: Object with a ``translate(text)`` method, used for
                every call; when omitted a new GoogleTranslator is created
                per call
        """
        self.target_language = target_language
        self.enabled = enabled and target_language != SOURCE_LANGUAGE
        self.offline = False
        self._translator = translator
        # GoogleTranslator keeps the text of the request on the instance,
        # so a shared backend must not be called from two threads at once
        self._backend_lock = threading.Lock()
        self._cache: Dict[str, str] = {}

    def _backend_translate(self, text: str) -> str:
        if self._translator is None:
            return GoogleTranslator(source=SOURCE_LANGUAGE, target=self.target_language).translate(text)
        with self._backend_lock:
            return self._translator.translate(text)

    def prepare(self) -> bool:
        """
        Probe the online translator once and fill the label cache.

        Blocks on the network; run it in a worker thread.

        Returns:
            True if online translation works, False if offline mode is active
        """
        if not self.enabled:
            return False

        try:
            result = self._backend_translate("hello")
            if not result:
                raise ValueError("empty translation result")
        except Exception as e:
            self.offline = True
            logger.warning(f"Translation service unavailable, using offline mode: {e}")
            return False

        self.offline = False
        for category_id in CATEGORIES:
            self.translate(category_display_name(category_id))
        for difficulty in DIFFICULTIES:
            self.translate(difficulty_display_name(difficulty))
        logger.info(f"Online translation ready (target={self.target_language})")
        return True

    def close(self) -> None:
        """Forget cached results."""
        self._cache.clear()

    def _glossary_lookup(self, text: str) -> Optional[str]:
        glossary = OFFLINE_GLOSSARY.get(self.target_language, {})
        return glossary.get(text.strip().lower())

    def _known_translation(self, text: str) -> str:
        """Glossary or cached translation of ``text``, without network access."""
        if not text or not self.enabled:
            return text
        known = self._glossary_lookup(text)
        if known is not None:
            return known
        return self._cache.get(text, text)

    def translate(self, text: str) -> str:
        """Translate a piece of text, returning it unchanged on failure."""
        if not text or not self.enabled:
            return text

        known = self._glossary_lookup(text)
        if known is not None:
            return known

        if self.offline:
            return text

        if text in self._cache:
            return self._cache[text]

        try:
            translated = self._backend_translate(text)
        except Exception as e:
            logger.warning(f"Translation failed, keeping original text: {e}")
            return text

        if not translated:
            return text

        self._cache[text] = translated
        return translated

    def translate_question(self, question: Question) -> Question:
        """Translate the visible text of a question."""
        if not self.enabled:
            return question

        try:
            return replace(
                question,
                category=self.translate(question.category),
                question=self.translate(question.question),
                correct_answer=self.translate(question.correct_answer),
                incorrect_answers=tuple(self.translate(a) for a in question.incorrect_answers),
            )
        except Exception as e:
            logger.warning(f"Question translation failed, keeping original: {e}")
            return question

    def translate_questions(self, questions: Iterable[Question]) -> List[Question]:
        return [self.translate_question(q) for q in questions]

    def translate_label(self, difficulty: Optional[str]) -> str:
        """Display label for a difficulty id in the target language."""
        if difficulty is None:
            return ""
        return self._known_translation(difficulty_display_name(difficulty))

    def category_name(self, category_id: Optional[int]) -> str:
        """Display name for a category id in the target language."""
        if category_id is None:
            return ""
        if category_id not in CATEGORIES:
            return category_display_name(category_id)
        return self._known_translation(category_display_name(category_id))
