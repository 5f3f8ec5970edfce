"""Tests for DispatchPool init/teardown lifecycle.

Tests cover:
- Allocation of all N slots with ids 0..N-1
- All-or-nothing init with rollback on partial failure
- Teardown of every slot, including disabled ones
- Teardown waiting for in-flight scripts, and retirement of late ones

Run with:
    python -m pytest tests/scriptpool/test_pool.py -v
"""

import threading
import time

import pytest

from scriptpool.config import PoolConfig
from scriptpool.errors import (
    InstanceAllocationError,
    PoolInitError,
    PoolNotStartedError,
    PoolStateError,
)
from scriptpool.slots import Dispatcher, DispatchPool, SlotState
from tests.fakes.fake_interpreters import WAIT, FlakyFactory


class TestInit:
    """Tests for DispatchPool.init."""

    def test_allocates_all_slots(self):
        pool = DispatchPool(PoolConfig(num_slots=3))
        pool.init()
        try:
            assert pool.size == 3
            assert [slot.slot_id for slot in pool.slots] == [0, 1, 2]
            assert all(slot.instance is not None for slot in pool.slots)
            assert all(slot.state == SlotState.AVAILABLE for slot in pool.slots)
            assert pool.accepting
        finally:
            pool.teardown()

    def test_instances_are_distinct(self):
        pool = DispatchPool(PoolConfig(num_slots=2))
        pool.init()
        try:
            first, second = pool.slots
            assert first.instance is not second.instance
            assert first.lock is not second.lock
        finally:
            pool.teardown()

    def test_double_init_is_rejected(self):
        pool = DispatchPool(PoolConfig(num_slots=1))
        pool.init()
        try:
            with pytest.raises(PoolStateError):
                pool.init()
        finally:
            pool.teardown()

    def test_partial_failure_rolls_back_everything(self):
        factory = FlakyFactory(succeed=2)
        pool = DispatchPool(PoolConfig(num_slots=4), interpreter_factory=factory)

        with pytest.raises(PoolInitError) as exc_info:
            pool.init()

        assert isinstance(exc_info.value.__cause__, MemoryError)
        assert factory.calls == 3
        assert len(factory.built) == 2
        assert all(instance.closed for instance in factory.built)
        assert pool.slots == ()
        assert not pool.started

    def test_factory_returning_none_counts_as_failure(self):
        pool = DispatchPool(PoolConfig(num_slots=2), interpreter_factory=lambda: None)
        with pytest.raises(PoolInitError) as exc_info:
            pool.init()
        assert isinstance(exc_info.value.__cause__, InstanceAllocationError)

    def test_bad_lib_counts_as_failure(self):
        pool = DispatchPool(PoolConfig(num_slots=2, libs=("no_such_module_here",)))
        with pytest.raises(PoolInitError):
            pool.init()
        assert not pool.started

    def test_init_after_failed_init(self):
        factory = FlakyFactory(succeed=1)
        pool = DispatchPool(PoolConfig(num_slots=2), interpreter_factory=factory)
        with pytest.raises(PoolInitError):
            pool.init()
        factory.succeed = 10
        pool.init()
        try:
            assert pool.size == 2
        finally:
            pool.teardown()

    def test_context_manager(self):
        with DispatchPool(PoolConfig(num_slots=2)) as pool:
            assert pool.accepting
            instances = [slot.instance for slot in pool.slots]
        assert not pool.started
        assert all(instance.closed for instance in instances)


class TestTeardown:
    """Tests for DispatchPool.teardown."""

    def test_destroys_every_instance(self):
        pool = DispatchPool(PoolConfig(num_slots=3))
        pool.init()
        instances = [slot.instance for slot in pool.slots]

        assert pool.teardown() == 0

        assert all(instance.closed for instance in instances)
        assert all(slot.state == SlotState.DISABLED for slot in pool.slots)
        assert not pool.started

    def test_disabled_slots_are_a_no_op(self):
        pool = DispatchPool(PoolConfig(num_slots=2))
        pool.init()
        pool.slots[0].destroy_instance()

        assert pool.teardown() == 0
        assert pool.slots[1].instance is None

    def test_teardown_twice_is_harmless(self):
        pool = DispatchPool(PoolConfig(num_slots=1))
        pool.init()
        pool.teardown()
        assert pool.teardown() == 0

    def test_dispatch_after_teardown_raises(self):
        pool = DispatchPool(PoolConfig(num_slots=1))
        pool.init()
        dispatcher = Dispatcher(pool)
        pool.teardown()
        with pytest.raises(PoolNotStartedError):
            dispatcher.dispatch(b"return 1")

    def test_dispatch_before_init_raises(self):
        dispatcher = Dispatcher(DispatchPool(PoolConfig(num_slots=1)))
        with pytest.raises(PoolNotStartedError):
            dispatcher.dispatch(b"return 1")

    def test_waits_for_in_flight_script(self):
        gate = threading.Event()
        pool = DispatchPool(PoolConfig(num_slots=1), bindings={"gate": gate})
        pool.init()
        dispatcher = Dispatcher(pool)
        receipt = dispatcher.dispatch(b"gate.wait()\nreturn 'done'")
        assert receipt.accepted
        instance = pool.slots[0].instance

        stranded = []
        stopper = threading.Thread(target=lambda: stranded.append(pool.teardown(timeout=WAIT)))
        stopper.start()
        time.sleep(0.1)
        # Teardown must not have destroyed the instance under the running script
        assert not instance.closed
        assert not pool.accepting

        gate.set()
        stopper.join(WAIT)

        assert stranded == [0]
        assert instance.closed
        result = dispatcher.results.wait(receipt.request_id, timeout=WAIT)
        assert result.success
        assert result.value == "done"

    def test_late_executor_retires_its_slot(self):
        gate = threading.Event()
        pool = DispatchPool(PoolConfig(num_slots=2), bindings={"gate": gate})
        pool.init()
        dispatcher = Dispatcher(pool)
        receipt = dispatcher.dispatch(b"gate.wait()")
        busy_slot = pool.slots[receipt.slot_id]
        instance = busy_slot.instance

        try:
            assert pool.teardown(timeout=0.1) == 1
            assert not instance.closed
            assert busy_slot.retiring
            assert pool.slots[1].instance is None
        finally:
            gate.set()

        assert dispatcher.results.wait(receipt.request_id, timeout=WAIT) is not None
        assert instance.closed
        assert busy_slot.instance is None
        assert not busy_slot.is_busy


class TestStats:

    def test_counts_by_state(self, make_dispatcher, gate):
        dispatcher = make_dispatcher(num_slots=3)
        pool = dispatcher.pool
        pool.slots[2].destroy_instance()
        dispatcher.dispatch(b"gate.wait()")

        stats = pool.stats()
        assert stats == {"total": 3, "available": 1, "executing": 1, "disabled": 1}

    def test_describe(self, make_dispatcher):
        pool = make_dispatcher(num_slots=2).pool
        assert [entry["slot_id"] for entry in pool.describe()] == [0, 1]
