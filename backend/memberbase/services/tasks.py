"""Best-effort work that runs after the response is sent.

Contract: at most once, never retried, never raises into the request that
queued it. Failures are logged and dropped.
"""

from __future__ import annotations

import logging
from typing import Callable

from fastapi import BackgroundTasks

logger = logging.getLogger(__name__)


def _run_quietly(name: str, fn: Callable, *args, **kwargs) -> None:
    try:
        fn(*args, **kwargs)
    except Exception:
        logger.exception("background task failed task=%s", name)


class TaskQueue:
    def __init__(self, background: BackgroundTasks):
        self.background = background

    def enqueue(self, name: str, fn: Callable, *args, **kwargs) -> None:
        self.background.add_task(_run_quietly, name, fn, *args, **kwargs)
