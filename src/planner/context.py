"""Per-session planning context and cooperative cancellation."""

from __future__ import annotations

import threading
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Optional

from src.core.config import Settings
from src.core.errors import PhraseTimeoutError, PlanningCancelled
from src.core.logging_utils import clear_log_context, get_logger, set_log_context
from src.graph.records import PartStatus
from src.instruments.instrument import Instrument
from src.preference.engine import PreferenceEngine

logger = get_logger(__name__)


class CancellationToken:
    """Flag checked at loop boundaries; cancelling a parent cancels its children."""

    def __init__(self, parent: Optional["CancellationToken"] = None) -> None:
        self.parent = parent
        self._event = threading.Event()
        self._reason: Optional[str] = None

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self._reason = reason
            self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return self.parent is not None and self.parent.cancelled

    @property
    def reason(self) -> Optional[str]:
        if self._event.is_set():
            return self._reason
        if self.parent is not None:
            return self.parent.reason
        return None

    def child(self) -> "CancellationToken":
        return CancellationToken(self)

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise PlanningCancelled(self.reason or "cancelled")


class Deadline:
    """Monotonic deadline for one phrase attempt; ``None`` seconds never expires."""

    def __init__(self, phrase: str, seconds: Optional[float], clock: Callable[[], float] = time.monotonic) -> None:
        self.phrase = phrase
        self.seconds = seconds
        self._clock = clock
        self._expires = None if seconds is None else clock() + seconds

    def check(self) -> None:
        if self._expires is not None and self._clock() > self._expires:
            raise PhraseTimeoutError(self.phrase, float(self.seconds or 0.0))


class PlanningContext:
    """Explicit session state handed through the planner.

    Entering the context tags log records with the session, resets part states
    and starts the worker pool lazily; leaving it shuts the pool down.
    """

    def __init__(
        self,
        instrument: Instrument,
        settings: Settings,
        *,
        engine: Optional[PreferenceEngine] = None,
        token: Optional[CancellationToken] = None,
        session_id: Optional[str] = None,
    ) -> None:
        self.instrument = instrument
        self.settings = settings
        self.engine = engine or PreferenceEngine(settings.max_branching)
        self.token = token or CancellationToken()
        self.session_id = session_id or uuid.uuid4().hex[:12]
        self._executor: Optional[ThreadPoolExecutor] = None
        self._executor_lock = threading.Lock()
        self.active = False

    def __enter__(self) -> "PlanningContext":
        set_log_context(session_id=self.session_id)
        self.instrument.reset_states()
        self.active = True
        logger.info(
            "planning_session_start session=%s instrument=%s branching=%s workers=%s",
            self.session_id,
            self.instrument.name,
            self.settings.max_branching,
            self.settings.workers,
        )
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown()
        self.active = False
        if exc is not None:
            logger.warning("planning_session_failed session=%s error=%s", self.session_id, exc)
        else:
            logger.info("planning_session_done session=%s", self.session_id)
        clear_log_context()

    @property
    def executor(self) -> ThreadPoolExecutor:
        with self._executor_lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=max(1, self.settings.workers),
                    thread_name_prefix=f"planner-{self.session_id}",
                )
            return self._executor

    def shutdown(self) -> None:
        with self._executor_lock:
            if self._executor is not None:
                self._executor.shutdown(wait=True)
                self._executor = None

    def initial_status(self, uid: int) -> PartStatus:
        return self.instrument.initial_status(uid)

    def deadline(self, phrase: str) -> Deadline:
        return Deadline(phrase, self.settings.phrase_timeout)
