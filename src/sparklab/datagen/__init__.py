"""Synthetic data generation for sparklab."""

from .generator import (
    EVENT_COLUMNS,
    REFERRAL_COLUMNS,
    DataGenerator,
    GenerationResult,
    generate_events,
    generate_referrals,
)

__all__ = [
    "DataGenerator",
    "EVENT_COLUMNS",
    "GenerationResult",
    "REFERRAL_COLUMNS",
    "generate_events",
    "generate_referrals",
]
