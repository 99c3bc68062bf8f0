"""
Score store for the local leaderboard, persisted as a JSON file.
"""
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Tuple

from .models import ScoreEntry


class ScoreStore:
    """Append-only leaderboard kept in a JSON file, sorted by score."""

    def __init__(self, score_file: str = "./data/scores.json"):
        """
        Initialize the store.

        Args:
            score_file: Path of the JSON file holding the scores
        """
        self.score_file = Path(score_file)
        self.logger = logging.getLogger(__name__)
        self.load_errors: List[str] = []

    def append(self, entry: ScoreEntry) -> None:
        """
        Save a score entry.

        Args:
            entry: Entry to add to the leaderboard

        Raises:
            OSError: If the score file cannot be written, or exists but
                cannot be read (it is left untouched)
        """
        data = self._read()
        if self.load_errors:
            raise OSError(f"Refusing to overwrite unreadable score file: {self.load_errors[0]}")

        scores, unparsed = self._parse(data)
        scores.append(entry)
        # sorted() is stable, so equal scores keep insertion order
        scores = sorted(scores, key=lambda s: s.score, reverse=True)
        # Entries that could not be parsed are kept as they were
        self._write([s.to_dict() for s in scores] + unparsed)
        self.logger.info(f"Saved score {entry.score} for '{entry.username}'")

    def list_all(self) -> List[ScoreEntry]:
        """
        Return every saved score, best first.

        A missing, empty or unreadable file yields an empty list.
        """
        scores, _ = self._parse(self._read())
        return sorted(scores, key=lambda s: s.score, reverse=True)

    def _parse(self, data: List[Any]) -> Tuple[List[ScoreEntry], List[Any]]:
        scores = []
        unparsed = []
        for i, item in enumerate(data):
            try:
                scores.append(ScoreEntry.from_dict(item))
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                self.logger.warning(f"Skipping invalid score entry {i}: {e}")
                unparsed.append(item)
        return scores, unparsed

    def top_n(self, count: int = 3) -> List[ScoreEntry]:
        """
        Return the best scores.

        Args:
            count: Number of entries to return; less than 1 returns none
        """
        if count < 1:
            return []
        return self.list_all()[:count]

    def clear(self) -> None:
        """Delete all saved scores."""
        try:
            self.score_file.unlink()
            self.logger.info(f"Cleared scores in {self.score_file}")
        except FileNotFoundError:
            pass

    def _read(self) -> List[Dict[str, Any]]:
        self.load_errors.clear()

        if not self.score_file.exists():
            return []

        try:
            with open(self.score_file, 'r', encoding='utf-8') as f:
                content = f.read()
        except OSError as e:
            self._record_error(f"Failed to read score file {self.score_file}: {e}")
            return []

        if not content.strip():
            return []

        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            self._record_error(f"Invalid JSON in {self.score_file}: {e}")
            return []

        if not isinstance(data, dict) or not isinstance(data.get("scores"), list):
            self._record_error(f"Score file {self.score_file} must contain a 'scores' array")
            return []

        return data["scores"]

    def _write(self, items: List[Dict[str, Any]]) -> None:
        self.score_file.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.score_file.with_suffix(self.score_file.suffix + ".tmp")
        with open(tmp_path, 'w', encoding='utf-8') as f:
            json.dump({"scores": items}, f, indent=2, ensure_ascii=False)
        os.replace(tmp_path, self.score_file)

    def _record_error(self, message: str) -> None:
        self.logger.error(message)
        self.load_errors.append(message)

    def has_load_errors(self) -> bool:
        return len(self.load_errors) > 0
