"""
Policy Engine Package

Recipient limits and the administrative rules that shape assembly and
delivery of a message.
"""

from .validator import check_time_limit
from .rules import ComposeRules, ModeRequirements

__all__ = [
    "check_time_limit",
    "ComposeRules",
    "ModeRequirements",
]
