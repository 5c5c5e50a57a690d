"""
Event Scoring - How likely a scraped event and a canonical event are the same.

score = 0.4*title + 0.3*venue + 0.3*artist + time_bonus, then the override
rules below in order. A time-incompatible pair ends at half its score.
"""
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

from convergence.similarity import best_pairwise_similarity, contains_phrase, string_similarity
from utils.normalize import time_to_minutes

TITLE_WEIGHT = 0.4
VENUE_WEIGHT = 0.3
ARTIST_WEIGHT = 0.3

TIME_BONUS = 0.1
TIME_BONUS_WINDOW = 60        # minutes
TIME_INCOMPATIBLE_AFTER = 180  # minutes
ARTIST_IN_TITLE_SCORE = 0.9

# Listings for add-ons sold alongside the main event keep its date but not its time
AUX_TICKET_KEYWORDS = (
    "package", "upgrade", "vip", "parking", "add-on", "addon", "add on",
    "shuttle", "locker", "camping", "hotel", "merch", "cloakroom",
    "fast lane", "early entry", "ticket only",
)


@dataclass
class EventScore:
    title: float
    venue: float
    artist: float
    time_bonus: float
    time_compatible: bool
    score: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": round(self.title, 4),
            "venue": round(self.venue, 4),
            "artist": round(self.artist, 4),
            "time_bonus": self.time_bonus,
            "time_compatible": self.time_compatible,
            "score": round(self.score, 4),
        }


def artist_names(items: Optional[Iterable]) -> List[str]:
    names = []
    for item in items or []:
        name = item.get("name") if isinstance(item, dict) else getattr(item, "name", item)
        if name and str(name).strip():
            names.append(str(name).strip())
    return names


def has_aux_ticket_keyword(title: Optional[str]) -> bool:
    text = (title or "").lower()
    return any(keyword in text for keyword in AUX_TICKET_KEYWORDS)


def time_difference(start_a, start_b) -> Optional[int]:
    """Minutes between two times of day, wrapping at midnight."""
    a = time_to_minutes(start_a)
    b = time_to_minutes(start_b)
    if a is None or b is None:
        return None
    diff = abs(a - b)
    return min(diff, 1440 - diff)


def score_artists(
    scraped_title: Optional[str],
    scraped_artists: List[str],
    candidate_title: Optional[str],
    candidate_artists: List[str],
) -> float:
    """
    Best pairwise artist similarity; when one side lists no artists, an
    artist of the other side named in this side's title scores 0.9.
    """
    if scraped_artists and candidate_artists:
        return best_pairwise_similarity(scraped_artists, candidate_artists)
    if scraped_artists:
        if any(contains_phrase(candidate_title, name) for name in scraped_artists):
            return ARTIST_IN_TITLE_SCORE
        return 0.0
    if candidate_artists:
        if any(contains_phrase(scraped_title, name) for name in candidate_artists):
            return ARTIST_IN_TITLE_SCORE
    return 0.0


def score_event_pair(
    *,
    scraped_title: Optional[str],
    scraped_venue: Optional[str],
    scraped_artists: List[str],
    scraped_start,
    candidate_title: Optional[str],
    candidate_venue: Optional[str],
    candidate_artists: List[str],
    candidate_start,
) -> EventScore:
    title = string_similarity(scraped_title, candidate_title)
    venue = string_similarity(scraped_venue, candidate_venue)
    artist = score_artists(scraped_title, scraped_artists, candidate_title, candidate_artists)

    time_bonus = 0.0
    time_compatible = True
    diff = time_difference(scraped_start, candidate_start)
    if diff is not None:
        if diff <= TIME_BONUS_WINDOW:
            time_bonus = TIME_BONUS
        elif diff > TIME_INCOMPATIBLE_AFTER and not has_aux_ticket_keyword(scraped_title):
            time_compatible = False

    score = TITLE_WEIGHT * title + VENUE_WEIGHT * venue + ARTIST_WEIGHT * artist + time_bonus

    # Overrides, in order
    if time_compatible and venue > 0.8 and artist > 0.85:
        score = 0.95
    if time_compatible and venue > 0.8 and artist >= 0.8:
        score = max(score, 0.9)
    if venue > 0.8 and time_bonus > 0 and artist >= 0.4:
        score = max(score, 0.9)
    if venue > 0.85 and artist > 0.85 and time_bonus > 0:
        score = 1.0

    if not time_compatible:
        score *= 0.5

    return EventScore(
        title=title,
        venue=venue,
        artist=artist,
        time_bonus=time_bonus,
        time_compatible=time_compatible,
        score=min(score, 1.0),
    )
