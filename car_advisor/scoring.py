"""
Scoring & filtering engine.

score = daily_distance_weights[daily] * k1 + usage_weights[usage] * k1
        + sum(feature_weights[f] for f in features)

Candidates not matching the requested style are dropped, the rest are sorted
by score descending. Python's sort is stable, so equal scores keep catalog
order (first-inserted wins).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from car_advisor.catalog import Catalog, WeightProfile
from car_advisor.models import Answers, Style

NO_MATCH_MESSAGE = "No matching Volvo found"


class IncompleteAnswersError(ValueError):
    """recommend() called before all required questions were answered."""

    def __init__(self, missing: Tuple[str, ...]):
        self.missing = missing
        super().__init__(f"missing required answers: {', '.join(missing)}")


@dataclass(frozen=True)
class ScoredProduct:
    product_id: str
    score: float
    style: Style

    def to_dict(self) -> Dict[str, Any]:
        return {"product_id": self.product_id, "score": self.score, "style": self.style.value}


@dataclass(frozen=True)
class Recommendation:
    """Full ranking after style filtering. Empty ranking means no match."""

    ranked: Tuple[ScoredProduct, ...]

    @property
    def is_match(self) -> bool:
        return bool(self.ranked)

    @property
    def best(self) -> Optional[ScoredProduct]:
        return self.ranked[0] if self.ranked else None

    @property
    def product_ids(self) -> List[str]:
        return [item.product_id for item in self.ranked]

    def top(self, n: int) -> Tuple[ScoredProduct, ...]:
        return self.ranked[:max(0, n)]

    def to_dict(self, top_n: Optional[int] = None) -> Dict[str, Any]:
        ranked = self.ranked if top_n is None else self.top(top_n)
        return {
            "best": self.best.product_id if self.best else None,
            "ranked": [item.to_dict() for item in ranked],
            "message": None if self.is_match else NO_MATCH_MESSAGE,
        }


def score_product(profile: WeightProfile, answers: Answers, emphasis: float = 1) -> float:
    """Score one catalog entry. Required answers must be present."""
    score = (
        profile.daily_distance_weights[answers.daily_distance] * emphasis
        + profile.usage_weights[answers.usage] * emphasis
    )
    if answers.features:
        score += sum(profile.feature_weights[f] for f in answers.features)
    return score


def recommend(answers: Answers, catalog: Catalog, emphasis: float = 1) -> Recommendation:
    """
    Rank the catalog for the given answers.

    Args:
        answers: Completed answers (daily distance, usage and style required)
        catalog: Product catalog
        emphasis: k1 multiplier for daily distance and usage weights

    Returns:
        Recommendation; an empty ranking when the style filter drops everything

    Raises:
        IncompleteAnswersError: a required answer is missing
    """
    missing = answers.missing_fields()
    if missing:
        raise IncompleteAnswersError(missing)

    required_style = answers.required_style
    candidates = [
        ScoredProduct(product_id, score_product(profile, answers, emphasis), profile.style)
        for product_id, profile in catalog.items()
        if required_style is None or profile.style is required_style
    ]
    candidates.sort(key=lambda item: item.score, reverse=True)
    return Recommendation(ranked=tuple(candidates))
