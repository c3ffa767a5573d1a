"""
Access to the external analysis service: clients, typed results, caching and cost.
"""

from .client import AnalysisClient, AnthropicAnalysisClient
from .cost import CostLedger
from .invocation_manager import AIInvocationManager
from .results import InvocationKind

__all__ = [
    "AnalysisClient",
    "AnthropicAnalysisClient",
    "CostLedger",
    "AIInvocationManager",
    "InvocationKind",
]
