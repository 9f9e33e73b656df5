"""Operation executors: run a named cleanup operation locally or in a worker pool.

Heavy operations may be delegated to an executor.  When delegation fails
for any reason the caller runs the same algorithm on its own thread, so
both paths produce identical buffers.
"""

from __future__ import annotations

import importlib
import logging
from concurrent.futures import Future, ProcessPoolExecutor
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

from .errors import ExecutorError
from .raster import ProgressCallback, report_progress

logger = logging.getLogger(__name__)

# Operation name -> (module, function).  Functions take the payload as keyword arguments.
OPERATIONS: Dict[str, Tuple[str, str]] = {
    "remove-stray-pixels": ("pixel_cleanup.stray_pixels", "remove_stray_pixels_local"),
    "quantize-colors": ("pixel_cleanup.color_reducer", "quantize_colors_local"),
    "morphology": ("pixel_cleanup.morphology", "apply_morphology"),
    "detect-edges": ("pixel_cleanup.edge_smoother", "edge_map_local"),
}


def run_operation(name: str, payload: Mapping[str, Any]) -> Any:
    """Resolve *name* in the registry and call it with *payload*."""
    try:
        module_name, func_name = OPERATIONS[name]
    except KeyError:
        raise ExecutorError(f"Unknown operation: {name!r}") from None
    func = getattr(importlib.import_module(module_name), func_name)
    return func(**payload)


class OperationExecutor:
    """Interface shared by every executor implementation."""

    def is_available(self) -> bool:
        raise NotImplementedError

    def init(self) -> None:
        raise NotImplementedError

    def execute(
        self,
        name: str,
        payload: Mapping[str, Any],
        on_progress: Optional[ProgressCallback] = None,
    ) -> Future:
        raise NotImplementedError

    def shutdown(self) -> None:
        """Release any resources held by the executor."""

    def __enter__(self):
        self.init()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.shutdown()


class LocalExecutor(OperationExecutor):
    """Runs operations synchronously in the calling thread."""

    def is_available(self) -> bool:
        return True

    def init(self) -> None:
        pass

    def execute(self, name, payload, on_progress=None) -> Future:
        future: Future = Future()
        report_progress(on_progress, 0, name)
        try:
            future.set_result(run_operation(name, payload))
        except Exception as exc:  # pylint: disable=broad-except
            future.set_exception(exc)
        return future


class ProcessPoolOperationExecutor(OperationExecutor):
    """Runs operations in a ``concurrent.futures`` process pool.

    The pool is created by ``init()``; until then the executor reports
    itself unavailable.
    """

    def __init__(self, max_workers: Optional[int] = None):
        self.max_workers = max_workers
        self._pool: Optional[ProcessPoolExecutor] = None

    def is_available(self) -> bool:
        return self._pool is not None

    def init(self) -> None:
        if self._pool is None:
            self._pool = ProcessPoolExecutor(max_workers=self.max_workers)
            logger.debug("Started process pool (max_workers=%s)", self.max_workers)

    def execute(self, name, payload, on_progress=None) -> Future:
        if self._pool is None:
            raise ExecutorError("Process pool has not been initialised")
        if name not in OPERATIONS:
            raise ExecutorError(f"Unknown operation: {name!r}")
        report_progress(on_progress, 0, name)
        return self._pool.submit(run_operation, name, dict(payload))

    def shutdown(self) -> None:
        if self._pool is not None:
            self._pool.shutdown(wait=True)
            self._pool = None


def execute_with_fallback(
    executor: Optional[OperationExecutor],
    name: str,
    payload: Mapping[str, Any],
    fallback: Callable[[], Any],
    on_progress: Optional[ProgressCallback] = None,
) -> Any:
    """Run *name* on *executor*, or *fallback* on this thread if that fails.

    Executor failures are logged as warnings and never reach the caller.
    Errors raised by the fallback itself propagate unchanged.
    """
    if executor is not None:
        try:
            if not executor.is_available():
                executor.init()
            result = executor.execute(name, payload, on_progress).result()
            report_progress(on_progress, 100, name)
            return result
        except Exception as exc:  # pylint: disable=broad-except
            logger.warning("Executor failed for %s, falling back to main thread: %s", name, exc)

    result = fallback()
    report_progress(on_progress, 100, name)
    return result
