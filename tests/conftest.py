"""Shared test fixtures for wordmesh."""

import pytest

from wordmesh.associations import MemoryAssociationStore
from wordmesh.config import LimitsConfig, RetryConfig
from wordmesh.coordinator import ConsistencyCoordinator
from wordmesh.entities import EntityStore
from wordmesh.exceptions import StoreUnavailableError
from wordmesh.retry import RetryPolicy


class FlakyStore:
    """Wraps a store and fails chosen methods a set number of times.

    ``fail("upsert_word_link", times=2)`` makes the next two calls raise
    StoreUnavailableError before the real method runs again.
    ``before("merge_sense_node", fn)`` runs ``fn()`` once, just ahead of
    the next call, to interleave another operation with a saga.
    """

    def __init__(self, inner):
        self._inner = inner
        self._failures = {}
        self._hooks = {}
        self.calls = {}

    def fail(self, method, times=1):
        self._failures[method] = times

    def before(self, method, fn):
        self._hooks[method] = fn

    def __getattr__(self, name):
        attr = getattr(self._inner, name)
        if not callable(attr):
            return attr

        def wrapper(*args, **kwargs):
            self.calls[name] = self.calls.get(name, 0) + 1
            hook = self._hooks.pop(name, None)
            if hook is not None:
                hook()
            remaining = self._failures.get(name, 0)
            if remaining:
                self._failures[name] = remaining - 1
                raise StoreUnavailableError(f"injected failure in {name}")
            return attr(*args, **kwargs)

        return wrapper


@pytest.fixture
def entities():
    """In-memory SQLite entity store."""
    with EntityStore.open(":memory:") as store:
        yield store


@pytest.fixture
def graph():
    return MemoryAssociationStore()


@pytest.fixture
def retry():
    """Retry policy with no backoff delay."""
    return RetryPolicy(RetryConfig(attempts=3, initial_delay=0, max_delay=0))


@pytest.fixture
def coordinator(entities, graph, retry):
    return ConsistencyCoordinator(entities, graph, retry=retry)


@pytest.fixture
def flaky_graph(graph):
    return FlakyStore(graph)


@pytest.fixture
def flaky_coordinator(entities, flaky_graph, retry):
    """Coordinator whose graph store can be told to fail."""
    return ConsistencyCoordinator(entities, flaky_graph, retry=retry)


@pytest.fixture
def limited_coordinator(entities, graph, retry):
    """Coordinator allowing one link per endpoint."""
    return ConsistencyCoordinator(
        entities, graph, retry=retry,
        limits=LimitsConfig(max_links_per_word=1, max_links_per_sense=1),
    )


@pytest.fixture
def network(coordinator):
    """User 1 with memory, storage and recall; storage also owned by user 2."""
    memory = coordinator.add_to_network(1, "memory", tags=["cs"], first_sense="recall ability")
    storage = coordinator.add_to_network(1, "storage")
    recall = coordinator.add_to_network(1, "Recall")
    coordinator.add_to_network(2, "storage")
    return coordinator, memory, storage, recall
