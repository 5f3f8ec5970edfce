"""Shared fixtures for scriptpool tests."""

import threading

import pytest

from scriptpool.config import PoolConfig
from scriptpool.interpreter import ScriptInterpreter
from scriptpool.slots import Dispatcher, DispatchPool
from tests.fakes.fake_interpreters import WAIT


@pytest.fixture
def gate():
    """Event scripts can block on with ``gate.wait()``."""
    event = threading.Event()
    yield event
    event.set()


@pytest.fixture
def make_dispatcher(gate):
    """Build started pools wrapped in a Dispatcher; torn down after the test."""
    pools = []

    def _make(num_slots=1, factory=ScriptInterpreter, **bindings):
        bindings.setdefault("gate", gate)
        pool = DispatchPool(
            PoolConfig(num_slots=num_slots, shutdown_timeout=WAIT),
            interpreter_factory=factory,
            bindings=bindings,
        )
        pool.init()
        pools.append(pool)
        return Dispatcher(pool)

    yield _make

    gate.set()
    for pool in pools:
        pool.teardown()
