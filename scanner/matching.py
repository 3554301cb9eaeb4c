"""
Cross-venue question matching. Maps questions on venue A to questions on venue B.

Classification pipeline for a candidate pair:
1. Exact normalized title -> overall 1.0, method "exact", auto tier
2. Weighted blend of similarity components (keyword, token, fuzzy, date, category)
3. Tiering: auto-approve (trades), review (logged for a human, never traded), reject

Settlement mismatch is the #1 risk in cross-venue arb. Inverse-phrased pairs
("overturn" vs "uphold") are not special-cased: they are expected to fall short
of the auto tier on scoring alone and are left to human review.

Best-match selection evaluates every candidate and is fully deterministic:
highest overall, then method rank (exact > keyword > token > fuzzy), then
lowest candidate index.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from config import Config
from scanner.models import EventMapping, MarketQuestion, MatchMethod, MatchTier, OutcomePair
from scanner.similarity import (
    DEFAULT_KEYWORD_GROUPS,
    KeywordGroup,
    SimilarityScores,
    normalize_title,
    score,
    settlement_flags,
)

logger = logging.getLogger(__name__)

_METHOD_RANK = {
    MatchMethod.EXACT: 0,
    MatchMethod.MANUAL: 0,
    MatchMethod.KEYWORD: 1,
    MatchMethod.TOKEN: 2,
    MatchMethod.FUZZY: 3,
}

# Component thresholds that decide which method "explains" a non-exact match
_KEYWORD_METHOD_MIN = 0.8
_TOKEN_METHOD_MIN = 0.7


@dataclass(frozen=True)
class MatchWeights:
    keyword: float = 0.40
    token: float = 0.30
    fuzzy: float = 0.15
    date: float = 0.10
    category: float = 0.05

    def __post_init__(self) -> None:
        values = (self.keyword, self.token, self.fuzzy, self.date, self.category)
        if any(v < 0 for v in values):
            raise ValueError(f"Match weights must be non-negative: {values}")
        if sum(values) <= 0:
            raise ValueError("Match weights must have a positive sum")

    @classmethod
    def from_config(cls, cfg: Config) -> MatchWeights:
        return cls(
            keyword=cfg.match_weight_keyword,
            token=cfg.match_weight_token,
            fuzzy=cfg.match_weight_fuzzy,
            date=cfg.match_weight_date,
            category=cfg.match_weight_category,
        )

    def combine(self, s: SimilarityScores) -> float:
        return (
            self.keyword * s.keyword
            + self.token * s.token
            + self.fuzzy * s.fuzzy
            + self.date * s.date
            + self.category * s.category
        )


@dataclass(frozen=True)
class TierThresholds:
    auto: float = 0.75
    review: float = 0.60

    def __post_init__(self) -> None:
        if not 0.0 <= self.review <= self.auto <= 1.0:
            raise ValueError(
                f"Tier thresholds must satisfy 0 <= review <= auto <= 1, "
                f"got review={self.review} auto={self.auto}"
            )

    @classmethod
    def from_config(cls, cfg: Config) -> TierThresholds:
        return cls(auto=cfg.match_auto_threshold, review=cfg.match_review_threshold)

    def tier_for(self, overall: float) -> MatchTier:
        if overall >= self.auto:
            return MatchTier.AUTO
        if overall >= self.review:
            return MatchTier.REVIEW
        return MatchTier.REJECT


@dataclass(frozen=True)
class MatchScore:
    overall: float
    components: SimilarityScores
    method: MatchMethod
    tier: MatchTier
    flags: tuple[str, ...] = ()

    @property
    def should_trade(self) -> bool:
        return self.tier == MatchTier.AUTO

    @property
    def needs_review(self) -> bool:
        return self.tier == MatchTier.REVIEW


@dataclass(frozen=True)
class BestMatch:
    candidate: MarketQuestion
    index: int
    score: MatchScore


@dataclass
class MappingReport:
    """Outcome of a bulk matching pass."""
    questions_a: int = 0
    questions_b: int = 0
    auto: list[EventMapping] = field(default_factory=list)
    review: list[EventMapping] = field(default_factory=list)
    rejected: int = 0

    @property
    def mappings(self) -> list[EventMapping]:
        return self.auto + self.review


def default_outcome_correspondence(
    outcomes_a: tuple[str, ...],
    outcomes_b: tuple[str, ...],
) -> tuple[OutcomePair, ...]:
    """
    Pair outcome labels case-insensitively ("Yes" <-> "yes").

    Returns an empty tuple when the label sets cannot be paired one-to-one;
    a mapping with an empty correspondence is never tradeable.
    """
    if len(outcomes_a) != len(outcomes_b):
        return ()
    by_label: dict[str, str] = {}
    for label in outcomes_b:
        key = label.strip().lower()
        if key in by_label:
            return ()
        by_label[key] = label
    pairs: list[OutcomePair] = []
    seen: set[str] = set()
    for label in outcomes_a:
        key = label.strip().lower()
        if key in seen or key not in by_label:
            return ()
        seen.add(key)
        pairs.append(OutcomePair(outcome_a=label, outcome_b=by_label[key]))
    return tuple(pairs)


class MatchClassifier:
    """
    Scores candidate pairs and turns the best ones into EventMappings.

    Holds no mutable state; the same inputs and configuration always
    produce the same output.
    """

    def __init__(
        self,
        weights: MatchWeights | None = None,
        thresholds: TierThresholds | None = None,
        keyword_groups: tuple[KeywordGroup, ...] = DEFAULT_KEYWORD_GROUPS,
    ) -> None:
        self._weights = weights or MatchWeights()
        self._thresholds = thresholds or TierThresholds()
        self._groups = keyword_groups

    @classmethod
    def from_config(cls, cfg: Config) -> MatchClassifier:
        return cls(MatchWeights.from_config(cfg), TierThresholds.from_config(cfg))

    @property
    def thresholds(self) -> TierThresholds:
        return self._thresholds

    def classify(self, a: MarketQuestion, b: MarketQuestion) -> MatchScore:
        flags = settlement_flags(a.title, b.title)

        if normalize_title(a.title) == normalize_title(b.title):
            perfect = SimilarityScores(keyword=1.0, token=1.0, fuzzy=1.0, date=1.0, category=1.0)
            return MatchScore(
                overall=1.0,
                components=perfect,
                method=MatchMethod.EXACT,
                tier=MatchTier.AUTO,
                flags=flags,
            )

        components = score(a, b, self._groups)
        overall = min(1.0, max(0.0, self._weights.combine(components)))

        if components.keyword >= _KEYWORD_METHOD_MIN:
            method = MatchMethod.KEYWORD
        elif components.token >= _TOKEN_METHOD_MIN:
            method = MatchMethod.TOKEN
        else:
            method = MatchMethod.FUZZY

        return MatchScore(
            overall=overall,
            components=components,
            method=method,
            tier=self._thresholds.tier_for(overall),
            flags=flags,
        )

    def find_best_match(
        self,
        question: MarketQuestion,
        candidates: list[MarketQuestion],
    ) -> BestMatch | None:
        """
        Evaluate every candidate and return the best non-rejected one.
        """
        best: BestMatch | None = None
        best_key: tuple[float, int, int] | None = None

        for index, candidate in enumerate(candidates):
            match_score = self.classify(question, candidate)
            key = (-match_score.overall, _METHOD_RANK[match_score.method], index)
            if best_key is None or key < best_key:
                best_key = key
                best = BestMatch(candidate=candidate, index=index, score=match_score)

        if best is None or best.score.tier == MatchTier.REJECT:
            if best is not None:
                logger.debug(
                    "No match for '%s': best %s at %.1f%% (%s)",
                    question.title[:60], best.candidate.question_id,
                    best.score.overall * 100, best.score.components.breakdown(),
                )
            return None

        logger.debug(
            "Best match '%s' -> '%s' overall=%.1f%% method=%s tier=%s",
            question.title[:60], best.candidate.title[:60],
            best.score.overall * 100, best.score.method.value, best.score.tier.name,
        )
        return best

    def build_mapping(
        self,
        a: MarketQuestion,
        b: MarketQuestion,
        match_score: MatchScore,
        now: datetime | None = None,
    ) -> EventMapping:
        now = now or datetime.now(timezone.utc)
        return EventMapping(
            id_a=a.question_id,
            id_b=b.question_id,
            confidence=match_score.overall,
            method=match_score.method,
            outcome_correspondence=default_outcome_correspondence(a.outcomes, b.outcomes),
            active=True,
            created_at=now,
            updated_at=now,
            description=a.title,
            tier=match_score.tier,
            resolution_time=a.resolution_time,
        )

    def build_mappings(
        self,
        questions_a: list[MarketQuestion],
        questions_b: list[MarketQuestion],
        now: datetime | None = None,
    ) -> MappingReport:
        """Best-match every venue-A question against the venue-B list."""
        report = MappingReport(questions_a=len(questions_a), questions_b=len(questions_b))

        for question in questions_a:
            best = self.find_best_match(question, questions_b)
            if best is None:
                report.rejected += 1
                continue

            mapping = self.build_mapping(question, best.candidate, best.score, now=now)
            if best.score.tier == MatchTier.AUTO:
                report.auto.append(mapping)
            else:
                report.review.append(mapping)

            if best.score.flags:
                logger.warning(
                    "Match flagged for review %s: '%s' -> '%s' (%.1f%%, %s)",
                    ",".join(best.score.flags), question.title[:50],
                    best.candidate.title[:50], best.score.overall * 100, best.score.tier.name,
                )
            else:
                logger.info(
                    "Match %s: '%s' -> %s (%.1f%%, %s)",
                    best.score.tier.name, question.title[:50], best.candidate.question_id,
                    best.score.overall * 100, best.score.method.value,
                )

        logger.info(
            "Built mappings: %d A questions, %d B questions, %d auto, %d review, %d rejected",
            report.questions_a, report.questions_b,
            len(report.auto), len(report.review), report.rejected,
        )
        return report


def manual_mapping(
    id_a: str,
    id_b: str,
    description: str = "",
    outcomes_a: tuple[str, ...] = ("Yes", "No"),
    outcomes_b: tuple[str, ...] = ("yes", "no"),
    now: datetime | None = None,
) -> EventMapping:
    """Operator-asserted mapping: confidence 1.0, method manual, auto tier."""
    now = now or datetime.now(timezone.utc)
    return EventMapping(
        id_a=id_a,
        id_b=id_b,
        confidence=1.0,
        method=MatchMethod.MANUAL,
        outcome_correspondence=default_outcome_correspondence(outcomes_a, outcomes_b),
        active=True,
        created_at=now,
        updated_at=now,
        description=description,
        tier=MatchTier.AUTO,
    )
