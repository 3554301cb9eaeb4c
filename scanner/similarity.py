"""
Similarity scoring between two market questions listed on different venues.

Five independent components, each in [0, 1]:
  - keyword:  weighted overlap of curated concept groups (synonym substrings)
  - token:    Jaccard similarity of content words
  - fuzzy:    normalized Levenshtein similarity of the normalized titles
  - date:     proximity of resolution timestamps
  - category: exact category agreement, neutral when unknown

All functions are pure and deterministic. No I/O, no wall clock.

Settlement flags (year / settlement keyword / numeric threshold disagreement)
are reported separately for human review and never change a score.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timezone

from rapidfuzz.distance import Levenshtein

from scanner.models import MarketQuestion


@dataclass(frozen=True)
class KeywordGroup:
    canonical: str
    synonyms: tuple[str, ...]
    weight: float  # importance of the concept to the event identity


# Party groups list each party's 2024 presidential nominee, and nominee groups
# list the "<party> candidate/nominee" phrasing, so person-named and
# party-named questions about the same race share concepts.
POLITICAL_KEYWORDS: tuple[KeywordGroup, ...] = (
    KeywordGroup(
        "trump",
        ("donald trump", "trump", "d trump", "president trump", "donald j trump", "djt",
         "republican candidate", "republican nominee", "gop nominee", "gop candidate"),
        1.0,
    ),
    KeywordGroup("biden", ("joe biden", "biden", "president biden", "joseph biden"), 1.0),
    KeywordGroup(
        "harris",
        ("kamala harris", "harris", "vice president harris",
         "democratic candidate", "democratic nominee"),
        1.0,
    ),
    KeywordGroup(
        "republican",
        ("republican", "gop", "r candidate", "republican nominee", "republican candidate", "trump"),
        0.9,
    ),
    KeywordGroup(
        "democrat",
        ("democrat", "democratic", "d candidate", "democratic nominee", "democratic candidate",
         "harris"),
        0.9,
    ),
    KeywordGroup(
        "presidential_election",
        ("presidential election", "president election", "potus", "presidency", "presidential race"),
        0.95,
    ),
    KeywordGroup("win_election", ("win", "wins", "victory", "elected", "becomes president"), 0.85),
    KeywordGroup("2024_election", ("2024", "2024 election", "november 2024", "11/2024"), 0.9),
)

CRYPTO_KEYWORDS: tuple[KeywordGroup, ...] = (
    KeywordGroup("bitcoin", ("bitcoin", "btc"), 1.0),
    KeywordGroup("ethereum", ("ethereum", "eth", "ether"), 1.0),
    KeywordGroup(
        "price_above",
        ("above", "over", "exceed", "surpass", "reach", "hit", "trade above", "close above"),
        0.9,
    ),
    KeywordGroup("price_below", ("below", "under", "fall below", "drop below", "trade below"), 0.9),
    KeywordGroup(
        "end_of_year",
        ("end of year", "eoy", "december", "dec", "year end", "end of 2024", "end of 2025"),
        0.85,
    ),
)

DEFAULT_KEYWORD_GROUPS: tuple[KeywordGroup, ...] = POLITICAL_KEYWORDS + CRYPTO_KEYWORDS

STOPWORDS = frozenset({
    "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for",
    "of", "with", "by", "from", "will", "be", "is", "are", "was", "were",
    "have", "has", "had", "do", "does", "did", "can", "could", "would",
    "should", "may", "might", "must",
})

_TOKEN_SPLIT = re.compile(r"\W+")
_YEAR_PATTERN = re.compile(r"\b(20\d{2})\b")
_NUMBER_PATTERN = re.compile(r"\$?(\d+(?:,\d{3})*(?:\.\d+)?k?)")
_THRESHOLD_WORDS = ("over", "under", "above", "below", "exceeds")

# Phrases whose presence on only one side suggests different settlement criteria
_SETTLEMENT_KEYWORDS = frozenset({
    "popular vote",
    "electoral",
    "inauguration",
    "sworn in",
    "resign",
    "impeach",
    "conviction",
    "indictment",
    "nominee",
    "primary",
    "before",
    "by end of",
    "first term",
    "second term",
})

_SECONDS_PER_DAY = 86400.0


@dataclass(frozen=True)
class SimilarityScores:
    keyword: float
    token: float
    fuzzy: float
    date: float
    category: float

    def breakdown(self) -> str:
        return (
            f"Keyword: {self.keyword:.0%}, Token: {self.token:.0%}, "
            f"Fuzzy: {self.fuzzy:.0%}, Date: {self.date:.0%}, Category: {self.category:.0%}"
        )


def normalize_title(text: str) -> str:
    return text.lower().strip()


def extract_keywords(text: str, groups: tuple[KeywordGroup, ...]) -> dict[str, float]:
    """Map canonical concept -> weight for every group with a synonym in text."""
    normalized = normalize_title(text)
    found: dict[str, float] = {}
    for group in groups:
        if any(syn in normalized for syn in group.synonyms):
            found[group.canonical] = max(found.get(group.canonical, 0.0), group.weight)
    return found


def keyword_score(
    text_a: str,
    text_b: str,
    groups: tuple[KeywordGroup, ...] = DEFAULT_KEYWORD_GROUPS,
) -> float:
    """Weighted Jaccard over concept groups: sum(min) / sum(max)."""
    kw_a = extract_keywords(text_a, groups)
    kw_b = extract_keywords(text_b, groups)
    if not kw_a and not kw_b:
        return 0.0

    intersection = 0.0
    union = 0.0
    for key in sorted(kw_a.keys() | kw_b.keys()):
        w_a = kw_a.get(key, 0.0)
        w_b = kw_b.get(key, 0.0)
        if w_a > 0 and w_b > 0:
            intersection += min(w_a, w_b)
        union += max(w_a, w_b)
    return intersection / union if union > 0 else 0.0


def tokenize(text: str) -> frozenset[str]:
    return frozenset(
        tok for tok in _TOKEN_SPLIT.split(text.lower())
        if len(tok) > 2 and tok not in STOPWORDS
    )


def token_overlap_score(text_a: str, text_b: str) -> float:
    """Jaccard similarity of content tokens. Symmetric."""
    tokens_a = tokenize(text_a)
    tokens_b = tokenize(text_b)
    if not tokens_a and not tokens_b:
        return 1.0
    if not tokens_a or not tokens_b:
        return 0.0
    return len(tokens_a & tokens_b) / len(tokens_a | tokens_b)


def fuzzy_score(text_a: str, text_b: str) -> float:
    """(max_len - levenshtein) / max_len on normalized titles."""
    s1 = normalize_title(text_a)
    s2 = normalize_title(text_b)
    longest = max(len(s1), len(s2))
    if longest == 0:
        return 1.0
    return (longest - Levenshtein.distance(s1, s2)) / longest


def _as_utc(ts: datetime) -> datetime:
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts


def date_score(time_a: datetime, time_b: datetime) -> float:
    """
    1.0 within 7 days, 0 beyond 30 days, linear from 1.0 down to 0.7 in between.
    """
    diff_days = abs((_as_utc(time_a) - _as_utc(time_b)).total_seconds()) / _SECONDS_PER_DAY
    if diff_days > 30:
        return 0.0
    if diff_days <= 7:
        return 1.0
    return 0.7 + 0.3 * (30 - diff_days) / 23


def category_score(category_a: str | None, category_b: str | None) -> float:
    """Neutral 0.5 unless both known: 1.0 on agreement, 0.0 on disagreement."""
    a = (category_a or "").strip().lower()
    b = (category_b or "").strip().lower()
    if not a or not b:
        return 0.5
    return 1.0 if a == b else 0.0


def score(
    a: MarketQuestion,
    b: MarketQuestion,
    groups: tuple[KeywordGroup, ...] = DEFAULT_KEYWORD_GROUPS,
) -> SimilarityScores:
    return SimilarityScores(
        keyword=keyword_score(a.title, b.title, groups),
        token=token_overlap_score(a.title, b.title),
        fuzzy=fuzzy_score(a.title, b.title),
        date=date_score(a.resolution_time, b.resolution_time),
        category=category_score(a.category, b.category),
    )


def _extract_thresholds(text: str) -> set[str]:
    """Numbers that follow a threshold word within ~20 chars."""
    lower = text.lower()
    found: set[str] = set()
    for match in _NUMBER_PATTERN.finditer(lower):
        before = lower[max(0, match.start() - 20):match.start()]
        if any(word in before for word in _THRESHOLD_WORDS):
            found.add(match.group(1).replace(",", ""))
    return found


def settlement_flags(title_a: str, title_b: str) -> tuple[str, ...]:
    """
    Report settlement-risk disagreements between two titles.

    Informational only: flags surface in logs and review output.
    """
    flags: list[str] = []

    years_a = set(_YEAR_PATTERN.findall(title_a))
    years_b = set(_YEAR_PATTERN.findall(title_b))
    if years_a and years_b and years_a != years_b:
        flags.append("year_mismatch")

    lower_a = title_a.lower()
    lower_b = title_b.lower()
    if any((kw in lower_a) != (kw in lower_b) for kw in sorted(_SETTLEMENT_KEYWORDS)):
        flags.append("settlement_keyword")

    thresholds_a = _extract_thresholds(title_a)
    thresholds_b = _extract_thresholds(title_b)
    if thresholds_a and thresholds_b and thresholds_a != thresholds_b:
        flags.append("threshold_mismatch")

    return tuple(flags)
