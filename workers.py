"""Run blocking lifecycle operations off the caller's thread."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable

_log = logging.getLogger(__name__)


class LifecycleWorker:
    """Thread pool for ``ModManager`` / ``TranslationManager`` operations.

    ``submit`` returns a ``Future`` resolving to ``(success, message)``. Calls on
    the same mod are still serialized by the manager's per-mod locks.
    """

    def __init__(self, max_workers: int = 2):
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="ghpcmm")

    def submit(
        self,
        func: Callable,
        *args,
        on_finished: Callable[[bool, str], None] | None = None,
        **kwargs,
    ) -> Future:
        def run() -> tuple[bool, str]:
            try:
                result = func(*args, **kwargs)
                if isinstance(result, tuple) and len(result) == 2:
                    ok, msg = bool(result[0]), str(result[1])
                else:
                    ok, msg = True, "Done"
            except Exception as e:
                _log.exception("Background operation %s failed", getattr(func, "__name__", func))
                ok, msg = False, str(e)
            if on_finished is not None:
                on_finished(ok, msg)
            return ok, msg

        return self._executor.submit(run)

    @staticmethod
    def cancel_token() -> threading.Event:
        """A fresh token to pass as ``cancel=`` and ``set()`` to stop the call."""
        return threading.Event()

    def shutdown(self, wait: bool = True):
        self._executor.shutdown(wait=wait)

    def __enter__(self) -> LifecycleWorker:
        return self

    def __exit__(self, *exc):
        self.shutdown()
