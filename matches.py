import json
import logging
import os
from typing import NamedTuple, Optional, Tuple

logger = logging.getLogger(__name__)


class Match(NamedTuple):
    id: int
    team1: str
    team2: str
    date: str
    time: str


# Euro 2024 fixtures open for prediction
DEFAULT_MATCHES: Tuple[Match, ...] = (
    Match(1, "Polska", "Niemcy", "2024-06-14", "18:00"),
    Match(2, "Francja", "Włochy", "2024-06-15", "21:00"),
)


class MatchCatalog:
    """Fixed, ordered list of matches. Built once at startup and never mutated."""

    def __init__(self, matches=DEFAULT_MATCHES):
        self._matches = tuple(matches)

    def list(self) -> Tuple[Match, ...]:
        return self._matches


def load_catalog(filename: Optional[str] = None) -> MatchCatalog:
    """Loads the catalog from a JSON list of match objects, falling back to the built-in fixtures."""
    if not filename:
        return MatchCatalog()
    if not os.path.exists(filename):
        logger.error("Matches file %s not found, using built-in fixtures", filename)
        return MatchCatalog()

    try:
        with open(filename, "r", encoding="utf-8") as f:
            raw = json.load(f)
        matches = [
            Match(int(m["id"]), str(m["team1"]), str(m["team2"]), str(m["date"]), str(m["time"]))
            for m in raw
        ]
    except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
        logger.error("Could not load %s: %s, using built-in fixtures", filename, e)
        return MatchCatalog()

    logger.info("Loaded %d matches from %s", len(matches), filename)
    return MatchCatalog(matches)
