"""Spending analytics package."""

from groupledger.analytics.spending import summarize_spending

__all__ = ["summarize_spending"]
