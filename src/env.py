"""
Execution environment shared by long-running jobs: verbosity, the worker pool,
interruption flags and the error channel for failed worker tasks.
"""
import os
import sys
import threading
import traceback
from concurrent.futures import ThreadPoolExecutor

import config


class Env:

    def __init__(self, thread_count=config.THREAD_COUNT, verbosity=1):
        self.verbosity = verbosity
        self._thread_count = thread_count
        self._executor = None
        self._lock = threading.Lock()
        self.errors = []
        self.interrupted_by_user = False
        self.interrupted_by_error = False

    def thread_count(self):
        if self._thread_count <= 0:
            self._thread_count = os.cpu_count() or 1
        return self._thread_count

    def executor(self):
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(max_workers=self.thread_count(),
                                                    thread_name_prefix="worker")
            return self._executor

    def shutdown(self):
        with self._lock:
            if self._executor is not None:
                self._executor.shutdown(wait=True)
                self._executor = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.shutdown()
        return False

    # --- interruption -----------------------------------------------------

    def interrupt(self):
        """Asks running tasks to stop; they return without a result."""
        self.interrupted_by_user = True

    def is_interrupted(self):
        return self.interrupted_by_user or self.interrupted_by_error

    def clear_interruption(self):
        self.interrupted_by_user = False
        self.interrupted_by_error = False

    def exception(self, exc):
        """Reports an exception raised inside a worker task."""
        with self._lock:
            self.errors.append(exc)
        print("".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
              file=sys.stderr, end="")

    # --- output -----------------------------------------------------------

    def debug(self, level, message):
        if self.verbosity >= level:
            print(message, flush=True)

    def debug_inline(self, level, message):
        if self.verbosity >= level:
            print(message, end="", flush=True)

    def error(self, level, message):
        if self.verbosity >= level:
            print(message, file=sys.stderr, flush=True)


_default = None
_default_lock = threading.Lock()


def default_env():
    """Process-wide environment used when a job is not given one explicitly."""
    global _default
    with _default_lock:
        if _default is None:
            _default = Env()
        return _default
