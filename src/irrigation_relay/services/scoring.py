"""Irrigation score policy.

The weight table is data (``ScoringPolicy``) so it can be tuned per site or
loaded from YAML; the decision boundary is not, because deployed dashboards and
device firmware compare against the same fixed thresholds.
"""
from __future__ import annotations

from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, model_validator

from irrigation_relay.domain.enums import Recommendation
from irrigation_relay.domain.models import CanonicalState, IrrigationDecision

RECOMMENDED_MIN_SCORE = 6
CONSIDER_MIN_SCORE = 4

ScoredMetric = Literal[
    "temperature",
    "humidity",
    "soil_moisture",
    "soil_moisture_raw",
    "light_level",
    "light_level_raw",
    "rain_intensity",
    "rain_intensity_raw",
]


class ScoringRule(BaseModel):
    """Adds ``weight`` to the score when ``metric <op> threshold`` holds."""

    model_config = ConfigDict(frozen=True)

    metric: ScoredMetric
    op: Literal["lt", "gt"]
    threshold: float
    weight: int

    def applies(self, state: CanonicalState) -> bool:
        value = float(getattr(state, self.metric))
        if self.op == "lt":
            return value < self.threshold
        return value > self.threshold


class ScoringPolicy(BaseModel):
    model_config = ConfigDict(frozen=True)

    rules: tuple[ScoringRule, ...]
    min_score: int = 0
    max_score: int = 10

    @model_validator(mode="after")
    def check_bounds(self) -> "ScoringPolicy":
        if self.min_score > self.max_score:
            raise ValueError("min_score must not exceed max_score")
        return self


DEFAULT_POLICY = ScoringPolicy(
    rules=(
        # moisture deficit favours irrigation
        ScoringRule(metric="soil_moisture", op="lt", threshold=50.0, weight=4),
        # rain makes it unnecessary
        ScoringRule(metric="rain_intensity", op="gt", threshold=30.0, weight=-3),
        ScoringRule(metric="temperature", op="gt", threshold=30.0, weight=2),
        ScoringRule(metric="temperature", op="lt", threshold=15.0, weight=-1),
        ScoringRule(metric="humidity", op="lt", threshold=40.0, weight=1),
        ScoringRule(metric="humidity", op="gt", threshold=80.0, weight=-1),
    )
)


def classify(score: int) -> Recommendation:
    if score >= RECOMMENDED_MIN_SCORE:
        return Recommendation.RECOMMENDED
    if score >= CONSIDER_MIN_SCORE:
        return Recommendation.CONSIDER
    return Recommendation.NOT_RECOMMENDED


def score_state(state: CanonicalState, policy: ScoringPolicy = DEFAULT_POLICY) -> int:
    raw = sum(rule.weight for rule in policy.rules if rule.applies(state))
    return max(policy.min_score, min(policy.max_score, raw))


def compute_decision(state: CanonicalState, policy: ScoringPolicy = DEFAULT_POLICY) -> IrrigationDecision:
    """Pure function of ``state``; no hidden inputs."""
    score = score_state(state, policy)
    return IrrigationDecision(score=score, recommendation=classify(score))


def load_policy(path: str | Path) -> ScoringPolicy:
    """Load a policy table from YAML.

    Expected shape::

        rules:
          - {metric: soil_moisture, op: lt, threshold: 45, weight: 4}
        max_score: 10
    """
    p = Path(path)
    data = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    return ScoringPolicy.model_validate(data)
