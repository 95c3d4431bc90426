"""
Mock utilities for testing the enhancer backend.
"""

from .providers import FlakyProvider, ScenarioProvider
from .settings import TEST_DATABASE_URL, make_settings
from .store import InMemoryCreditStore

__all__ = [
    "FlakyProvider",
    "InMemoryCreditStore",
    "ScenarioProvider",
    "TEST_DATABASE_URL",
    "make_settings",
]
