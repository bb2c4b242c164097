#!/usr/bin/env python3
"""Opportunity evaluator ("Judge"): judgment -> spawn decision + sizing."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from analysis_engine import MarketJudgment
from logging_utils import get_logger

# Capital scales linearly with confidence over this band.
SCALING_CONFIDENCE_FLOOR = 0.7
SCALING_CONFIDENCE_CEIL = 1.0


@dataclass
class JudgeConfig:
    min_sentiment: float = 0.3
    min_confidence: float = 0.7
    min_capital: float = 0.1
    max_capital: float = 1.0
    max_slippage: float = 0.005
    stop_loss_pct: float = 5.0
    target_profit_pct: float = 15.0

    def __post_init__(self) -> None:
        if self.min_capital <= 0:
            raise ValueError(f"min_capital must be > 0, got {self.min_capital}")
        if self.min_capital > self.max_capital:
            raise ValueError(
                f"min_capital ({self.min_capital}) exceeds max_capital ({self.max_capital})"
            )
        if not 0.0 <= self.max_slippage <= 1.0:
            raise ValueError(f"max_slippage must be within [0, 1], got {self.max_slippage}")


@dataclass(frozen=True)
class RecommendedConfig:
    capital: float
    max_slippage: float
    stop_loss: float
    target_profit: float

    def to_dict(self) -> Dict[str, float]:
        return {
            "capital": self.capital,
            "maxSlippage": self.max_slippage,
            "stopLoss": self.stop_loss,
            "targetProfit": self.target_profit,
        }


@dataclass(frozen=True)
class OpportunityEvaluation:
    should_spawn: bool
    confidence: float
    reasons: Tuple[str, ...] = field(default_factory=tuple)
    recommended_config: Optional[RecommendedConfig] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "shouldSpawn": self.should_spawn,
            "confidence": self.confidence,
            "reasons": list(self.reasons),
            "recommendedConfig": self.recommended_config.to_dict() if self.recommended_config else None,
        }


def position_capital(confidence: float, min_capital: float, max_capital: float) -> float:
    """Capital for a confidence value, always within [min_capital, max_capital]."""
    if confidence < SCALING_CONFIDENCE_FLOOR:
        return min_capital
    span = SCALING_CONFIDENCE_CEIL - SCALING_CONFIDENCE_FLOOR
    frac = (min(confidence, SCALING_CONFIDENCE_CEIL) - SCALING_CONFIDENCE_FLOOR) / span
    capital = min_capital + (max_capital - min_capital) * frac
    return max(min_capital, min(max_capital, capital))


class OpportunityEvaluator:
    def __init__(self, config: Optional[JudgeConfig] = None):
        self.config = config or JudgeConfig()
        self.log = get_logger("judge")

    def evaluate(
        self,
        symbol: str,
        judgment: MarketJudgment,
        capital_bounds: Optional[Tuple[float, float]] = None,
    ) -> OpportunityEvaluation:
        cfg = self.config
        min_capital, max_capital = capital_bounds or (cfg.min_capital, cfg.max_capital)
        if min_capital > max_capital:
            raise ValueError(f"capital bounds inverted: {min_capital} > {max_capital}")

        reasons: List[str] = []
        sentiment_ok = abs(judgment.sentiment) >= cfg.min_sentiment
        confidence_ok = judgment.confidence >= cfg.min_confidence
        if sentiment_ok:
            reasons.append(f"|sentiment| {abs(judgment.sentiment):.2f} >= {cfg.min_sentiment:.2f}")
        else:
            reasons.append(f"|sentiment| {abs(judgment.sentiment):.2f} below {cfg.min_sentiment:.2f}")
        if confidence_ok:
            reasons.append(f"confidence {judgment.confidence:.2f} >= {cfg.min_confidence:.2f}")
        else:
            reasons.append(f"confidence {judgment.confidence:.2f} below {cfg.min_confidence:.2f}")
        reasons.append(f"market condition {judgment.condition}")

        evaluation = OpportunityEvaluation(
            should_spawn=sentiment_ok and confidence_ok,
            confidence=judgment.confidence,
            reasons=tuple(reasons),
            recommended_config=RecommendedConfig(
                capital=position_capital(judgment.confidence, min_capital, max_capital),
                max_slippage=cfg.max_slippage,
                stop_loss=cfg.stop_loss_pct,
                target_profit=cfg.target_profit_pct,
            ),
        )
        self.log.debug(f"Evaluated {symbol}: {evaluation.to_dict()}")
        return evaluation
