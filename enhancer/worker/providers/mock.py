"""
Simple mock provider for development and fallback.
"""
import uuid
from collections import deque
from typing import Any, Deque, Dict

from .base import IProvider


class MockProvider(IProvider):
    """Returns a hosted-looking PNG URL for every call.

    Only the most recent ``history`` calls are kept for inspection.
    """

    def __init__(self, history: int = 50):
        self.calls: Deque[Dict[str, Any]] = deque(maxlen=history)

    @property
    def name(self) -> str:
        return "mock"

    async def call(self, model_version: str, backend_input: Dict[str, Any]) -> Any:
        """Run a prediction (mock)."""
        self.calls.append({"model_version": model_version, "input": backend_input})
        slug = model_version.split(":", 1)[0].replace("/", "-")
        return [f"https://mock.example.com/outputs/{slug}/{uuid.uuid4()}.png"]
