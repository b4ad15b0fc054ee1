"""
LLM-backed advisory agents.

This module contains:
- PricingAdvisor: Market-adjusted price and vehicle class suggestions
"""

from .advisor import PricingAdvisorAgent
from .base import AgentDecision, BaseAgent

__all__ = [
    "BaseAgent",
    "AgentDecision",
    "PricingAdvisorAgent",
]
