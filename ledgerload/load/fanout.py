from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, Mapping, TypeVar

from ledgerload.domain.errors import InvariantViolation, UnitFailed

T = TypeVar("T")


def run_concurrently(units: Mapping[str, Callable[[], T]], *, name: str = "unit") -> dict[str, T]:
    """
    Run every unit on its own thread and collect one result per key.

    Results are gathered in completion order. The first failure is raised as
    UnitFailed(key, error) without waiting for the remaining units: they are not
    cancelled and keep running in the background. InvariantViolation is re-raised
    unwrapped.
    """
    if not units:
        return {}

    executor = ThreadPoolExecutor(max_workers=len(units), thread_name_prefix=name)
    futures = {executor.submit(fn): key for key, fn in units.items()}
    results: dict[str, T] = {}
    try:
        for future in as_completed(futures):
            key = futures[future]
            try:
                results[key] = future.result()
            except InvariantViolation:
                raise
            except Exception as e:
                raise UnitFailed(key, e) from e
    finally:
        executor.shutdown(wait=False)
    return results
