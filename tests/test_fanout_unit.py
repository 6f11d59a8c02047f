import threading

import pytest

from ledgerload.domain.errors import InvariantViolation, PreconditionError, UnitFailed
from ledgerload.load.fanout import run_concurrently


def test_collects_one_result_per_key():
    results = run_concurrently({"a": lambda: 1, "b": lambda: 2, "c": lambda: 3})
    assert results == {"a": 1, "b": 2, "c": 3}


def test_empty_input_returns_empty_mapping():
    assert run_concurrently({}) == {}


def test_units_run_concurrently():
    barrier = threading.Barrier(3, timeout=5)

    def unit():
        barrier.wait()
        return True

    assert run_concurrently({"a": unit, "b": unit, "c": unit}) == {"a": True, "b": True, "c": True}


def test_first_failure_is_raised_with_its_key_without_cancelling_siblings():
    release = threading.Event()
    finished = threading.Event()

    def slow():
        release.wait(timeout=5)
        finished.set()
        return "slow"

    def broken():
        raise PreconditionError("No outputs")

    with pytest.raises(UnitFailed) as excinfo:
        run_concurrently({"slow": slow, "broken": broken})

    assert excinfo.value.key == "broken"
    assert isinstance(excinfo.value.error, PreconditionError)
    assert not finished.is_set()

    release.set()
    assert finished.wait(timeout=5)


def test_invariant_violation_is_not_wrapped():
    def defect():
        raise InvariantViolation("Total input 2 vs total output 3")

    with pytest.raises(InvariantViolation):
        run_concurrently({"a": defect})
