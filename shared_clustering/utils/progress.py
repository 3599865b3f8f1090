from __future__ import annotations

import logging
import threading
import time
from typing import Optional, Protocol


class ProgressSink(Protocol):
    """Receiver of progress notifications.

    Implementations must tolerate concurrent ``increment`` calls from worker
    threads.
    """

    def reset(self, label: str = "", total: Optional[int] = None) -> None: ...

    def increment(self) -> None: ...


class NullProgress:
    """Progress sink that discards everything (progress suppression)."""

    def reset(self, label: str = "", total: Optional[int] = None) -> None:
        pass

    def increment(self) -> None:
        pass


SUPPRESS_PROGRESS = NullProgress()


class ProgressLogger:
    def __init__(
        self,
        label: str = "",
        total: Optional[int] = None,
        step_every: int = 1000,
        secs_every: float = 5.0,
        enable_tqdm: bool = False,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.step_every = step_every
        self.secs_every = secs_every
        self.enable_tqdm = enable_tqdm
        self._logger = logger or logging.getLogger(__name__)
        self._lock = threading.Lock()
        self._tqdm = None
        self.label = label
        self.total = total
        self.count = 0
        self._start_phase(label, total)

    def _start_phase(self, label: str, total: Optional[int]) -> None:
        self.label = label
        self.total = total
        self.count = 0
        self._last_log_count = 0
        self._start = self._last_log_time = time.time()
        if self.enable_tqdm and label:
            from tqdm import tqdm

            self._tqdm = tqdm(total=total, desc=label, unit="it")

    def _close_tqdm(self) -> None:
        if self._tqdm is not None:
            self._tqdm.close()
            self._tqdm = None

    def _should_log(self, i: int) -> bool:
        if i - self._last_log_count >= self.step_every:
            return True
        return time.time() - self._last_log_time >= self.secs_every

    def _fmt(self, i: int) -> str:
        elapsed = time.time() - self._start
        rate = i / elapsed if elapsed > 0 else 0.0
        eta = ""
        if self.total and rate > 0:
            eta = f" | eta={max(self.total - i, 0) / rate:,.0f}s"
        total = f"{self.total:,}" if self.total is not None else "?"
        return f"{self.label}: {i:,}/{total} it | {rate:,.0f} it/s | elapsed={elapsed:,.0f}s{eta}"

    def reset(self, label: str = "", total: Optional[int] = None) -> None:
        """Finish the current phase and start a new one.

        A bare ``reset()`` just closes the current phase.
        """
        with self._lock:
            if self.label and self._tqdm is None and self.count:
                self._logger.info(self._fmt(self.count))
            self._close_tqdm()
            self._start_phase(label, total)
            if label:
                self._logger.info(label)

    def increment(self) -> None:
        with self._lock:
            self.count += 1
            if self._tqdm is not None:
                self._tqdm.update(1)
            elif self._should_log(self.count):
                self._logger.info(self._fmt(self.count))
                self._last_log_count = self.count
                self._last_log_time = time.time()


def create_progress(settings: Optional[dict] = None, enabled: bool = True) -> ProgressSink:
    """Build the progress sink described by the ``progress`` settings section."""
    if not enabled:
        return SUPPRESS_PROGRESS
    progress = (settings or {}).get("progress", {})
    return ProgressLogger(
        step_every=progress.get("step_every", 1000),
        secs_every=progress.get("secs_every", 5.0),
        enable_tqdm=progress.get("enable_tqdm", False),
    )
