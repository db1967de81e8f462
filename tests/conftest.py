"""
Shared pytest fixtures for notex tests.

Provides scripted chat providers so no test talks to a real endpoint.
"""

import json
import threading
from typing import Callable, Optional

import pytest

from notex.config import RunConfig
from notex.errors import TransientOracleError
from notex.executor import BoundedExecutor
from notex.oracle import OracleClient
from notex.store import MaterializationStore
from notex.types import OutputFormat


class ScriptedProvider:
    """
    ChatProvider whose answers come from a function of the prompt.

    The responder receives (system, user) and returns the completion text
    or raises. Calls are recorded for assertions.
    """

    def __init__(self, responder: Callable[[str, str], str]):
        self.responder = responder
        self.calls: list[tuple[str, str]] = []
        self._lock = threading.Lock()

    def generate(self, system: str, user: str, *, max_tokens: int = 4096) -> str:
        with self._lock:
            self.calls.append((system, user))
        return self.responder(system, user)

    def ping(self) -> None:
        pass

    def calls_for(self, marker: str) -> list[tuple[str, str]]:
        """Calls whose system prompt contains marker."""
        return [c for c in self.calls if marker in c[0]]


class UnreachableProvider:
    """Every call fails as if the endpoint were down."""

    def __init__(self):
        self.calls = 0
        self._lock = threading.Lock()

    def generate(self, system: str, user: str, *, max_tokens: int = 4096) -> str:
        with self._lock:
            self.calls += 1
        raise TransientOracleError("Connection refused")

    def ping(self) -> None:
        raise TransientOracleError("Connection refused")


def routing_responder(
    categorize: Optional[Callable[[str], dict]] = None,
    enhance: Optional[Callable[[str], str]] = None,
    reorganize: Optional[Callable[[str], dict]] = None,
    crossref: Optional[Callable[[str], dict]] = None,
) -> Callable[[str, str], str]:
    """
    Build a responder that dispatches on which pass is asking.

    Each handler gets the user prompt. JSON handlers return a dict that is
    serialized; the enhance handler returns text. Unset handlers give a
    neutral answer.
    """
    def respond(system: str, user: str) -> str:
        if "categorization assistant" in system:
            data = categorize(user) if categorize else {"category": "ideas"}
            return json.dumps(data)
        if "enhancement assistant" in system:
            if enhance:
                return enhance(user)
            return "Enhanced: " + user.split("Original note segment:\n", 1)[-1]
        if "file organization expert" in system:
            return json.dumps(reorganize(user) if reorganize else {"directives": []})
        if "knowledge linking expert" in system:
            return json.dumps(crossref(user) if crossref else {"references": []})
        raise AssertionError(f"Unexpected prompt: {system[:60]}")
    return respond


@pytest.fixture
def scripted():
    """Factory: scripted(responder) -> (provider, OracleClient)."""
    def make(responder):
        provider = ScriptedProvider(responder)
        return provider, OracleClient(provider)
    return make


@pytest.fixture
def executor():
    """Fast executor: no real backoff delays."""
    return BoundedExecutor(4, 2, backoff_base=0.0, backoff_max=0.0)


@pytest.fixture
def fast_config():
    return RunConfig(concurrency=4, max_retries=2, backoff_base=0.0, backoff_max=0.0)


@pytest.fixture
def store(tmp_path):
    return MaterializationStore(tmp_path / "out", OutputFormat.MARKDOWN)


@pytest.fixture
def notes_dir(tmp_path):
    """A small input tree."""
    root = tmp_path / "notes"
    root.mkdir()
    (root / "physics.md").write_text("Entropy grows.\n\nWhat is entropy? ?entropy definition\n")
    sub = root / "math"
    sub.mkdir()
    (sub / "topology.md").write_text("# Topology\n\nOpen sets and continuity.\n")
    (root / ".hidden.md").write_text("secret")
    (root / "blank.md").write_text("   \n\n")
    return root


@pytest.fixture
def routing():
    """The routing_responder factory."""
    return routing_responder


@pytest.fixture
def unreachable():
    return UnreachableProvider()
