"""
Live-preview detection loop.

A daemon thread pulls a frame from a caller-supplied source once per
period, runs detection on it and hands the result to a callback. Three
consecutive failed ticks (no frame, source error, detection error or
callback error) stop the loop on their own.
"""

import asyncio
import inspect
import threading
import time
from concurrent.futures import Future
from typing import Any, Callable, Optional

import numpy as np
from loguru import logger

from docscan.detector import DocumentDetector
from docscan.errors import FrameUnavailable
from docscan.models import DetectionResult, PixelBuffer, SchedulerState


FrameSource = Callable[[], Any]
ResultCallback = Callable[[DetectionResult], None]


async def _await(awaitable):
    return await awaitable


def _loop_running() -> bool:
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return False
    return True


class LiveDetectionScheduler:
    """
    Idle -> Running -> Idle.

    Thread safety:
      - Only one tick per run is in flight at a time; a tick that finds
        another in flight is skipped. Each start() gets a fresh tick lock,
        so a tick still stuck in a previous run never blocks the new one.
      - stop() may be called from any thread, including from inside the
        result callback. Once it returns, no callback fires for that run.
      - A hung frame source stalls its own tick only; stop()/start()
        never wait on it.
    """

    def __init__(self, detector: Optional[DocumentDetector] = None,
                 period_ms: int = 1000, max_consecutive_errors: int = 3):
        self.detector = detector or DocumentDetector()
        self.period_ms = period_ms
        self.max_consecutive_errors = max_consecutive_errors

        self._state: Optional[SchedulerState] = None
        self._frame_source: Optional[FrameSource] = None
        self._on_result: Optional[ResultCallback] = None
        self._stop_event: Optional[threading.Event] = None

        self._lock = threading.Lock()             # state swaps
        self._tick_lock: Optional[threading.Lock] = None   # one tick in flight, per run
        self._callback_lock = threading.RLock()   # stop() waits out a running callback

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    @property
    def state(self) -> Optional[SchedulerState]:
        return self._state

    @property
    def is_running(self) -> bool:
        state = self._state
        return state is not None and state.is_running

    def start(self, frame_source: FrameSource, on_result: ResultCallback,
              run_worker: bool = True) -> bool:
        """
        Begin live detection.

        Args:
            frame_source: Returns a PixelBuffer (or RGB/RGBA array) or None,
                either directly, as a concurrent.futures.Future, or as an
                awaitable. Awaitables are driven with asyncio.run(), so
                tick() must not be called from a thread with a running
                event loop; such a source should return a Future instead
            on_result: Called with each DetectionResult
            run_worker: False leaves ticking to the caller (tick())

        Returns:
            False if already running (no-op), True otherwise
        """
        with self._lock:
            if self._state is not None and self._state.is_running:
                logger.info("[LiveDetection] Already running")
                return False

            state = SchedulerState()
            stop_event = threading.Event()
            tick_lock = threading.Lock()
            self._state = state
            self._stop_event = stop_event
            self._tick_lock = tick_lock
            self._frame_source = frame_source
            self._on_result = on_result

        if run_worker:
            worker = threading.Thread(
                target=self._run, args=(state, stop_event, tick_lock),
                name="docscan-live-detection", daemon=True,
            )
            worker.start()

        logger.info(f"[LiveDetection] Started (period={self.period_ms}ms)")
        return True

    def stop(self):
        """Stop live detection. No-op when idle. Does not join the worker."""
        with self._callback_lock:
            with self._lock:
                state = self._state
                if state is None:
                    return
                self._halt_locked(state)
        logger.info("[LiveDetection] Stopped")

    def _halt_locked(self, state: SchedulerState):
        state.is_running = False
        if self._state is state:
            self._state = None
            if self._stop_event is not None:
                self._stop_event.set()

    # ── Ticks ─────────────────────────────────────────────────────────────────

    def _run(self, state: SchedulerState, stop_event: threading.Event, tick_lock: threading.Lock):
        period = self.period_ms / 1000.0
        while not stop_event.wait(period):
            if not state.is_running:
                break
            self._tick(state, tick_lock)
        logger.debug("[LiveDetection] Worker exiting")

    def tick(self) -> bool:
        """
        Run one detection cycle now.

        Awaitable frame sources cannot be driven from inside a running
        event loop; that tick fails with TypeError and counts toward the
        circuit breaker.

        Returns:
            True if a cycle ran, False if idle or another cycle was in flight
        """
        with self._lock:
            state, tick_lock = self._state, self._tick_lock
        if state is None or not state.is_running:
            return False
        return self._tick(state, tick_lock)

    def _tick(self, state: SchedulerState, tick_lock: threading.Lock) -> bool:
        if not tick_lock.acquire(blocking=False):
            logger.debug("[LiveDetection] Previous tick still running, skipping")
            return False
        try:
            self._run_cycle(state)
        finally:
            tick_lock.release()
        return True

    def _run_cycle(self, state: SchedulerState):
        state.last_run_at_millis = time.time() * 1000.0
        try:
            frame = self._acquire_frame()
            if not state.is_running:
                return
            if frame is None:
                raise FrameUnavailable("Frame source returned no frame")

            result = self.detector.detect(frame)
            if not state.is_running:
                return

            if not self._dispatch(state, result):
                return
        except FrameUnavailable as e:
            self._record_failure(state, e)
        except Exception as e:
            logger.opt(exception=e).debug("[LiveDetection] Tick failed")
            self._record_failure(state, e)
        else:
            state.consecutive_errors = 0

    def _acquire_frame(self) -> Optional[PixelBuffer]:
        frame = self._frame_source()
        if isinstance(frame, Future):
            frame = frame.result()
        elif inspect.isawaitable(frame):
            if _loop_running():
                if inspect.iscoroutine(frame):
                    frame.close()
                raise TypeError(
                    "Awaitable frame source called from a running event loop; "
                    "return a concurrent.futures.Future instead"
                )
            frame = asyncio.run(_await(frame))

        if frame is None or isinstance(frame, PixelBuffer):
            return frame
        if isinstance(frame, np.ndarray):
            return PixelBuffer.from_array(frame)
        raise TypeError(f"Frame source returned {type(frame).__name__}, expected PixelBuffer")

    def _dispatch(self, state: SchedulerState, result: DetectionResult) -> bool:
        """Invoke the callback unless stopped. Returns whether it was invoked."""
        with self._callback_lock:
            if not state.is_running:
                return False
            self._on_result(result)
            return True

    def _record_failure(self, state: SchedulerState, error: Exception):
        if not state.is_running:
            return
        state.consecutive_errors += 1
        logger.warning(
            f"[LiveDetection] Tick failed ({state.consecutive_errors}/"
            f"{self.max_consecutive_errors}): {type(error).__name__}: {error}"
        )
        if state.consecutive_errors >= self.max_consecutive_errors:
            with self._lock:
                self._halt_locked(state)
            logger.warning(
                f"[LiveDetection] {state.consecutive_errors} consecutive failures, stopping"
            )
