"""Background toolpath generation.

``GenerationWorker`` runs ``ToolpathGenerator.generate_design`` on a
daemon thread so callers stay responsive while large designs generate.

Scheduling rules
    - At most one generation runs at a time.
    - A request made while one is running is queued; a newer request
      replaces the queued one (only the latest design matters).
    - ``cancel()`` is observed between objects.  The running generation
      stops, its partial result is discarded and the queued request is
      dropped.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from enum import Enum, auto
from typing import Callable, Iterable, Optional

from millcam.design.objects import DrawingObject
from millcam.toolpath.generator import GenerationCancelled, ToolpathGenerator
from millcam.toolpath.segments import Toolpath

logger = logging.getLogger(__name__)

DesignToolpaths = list[tuple[int, Toolpath]]


class WorkerState(Enum):
    IDLE = auto()
    GENERATING = auto()


@dataclass(frozen=True)
class GenerationProgress:
    """Objects finished out of the running request's total."""

    done: int = 0
    total: int = 0

    @property
    def fraction(self) -> float:
        return self.done / self.total if self.total else 0.0


class GenerationWorker:
    """Single-flight background generator with a one-slot queue.

    Parameters
    ----------
    generator : ToolpathGenerator
        Generator used for every request.
    on_complete : Callable[[DesignToolpaths], None] | None
        Called on the worker thread with each finished result.
    """

    def __init__(
        self,
        generator: ToolpathGenerator,
        on_complete: Optional[Callable[[DesignToolpaths], None]] = None,
    ) -> None:
        self._gen = generator
        self._on_complete = on_complete

        self._lock = threading.Lock()
        self._cancel = threading.Event()
        self._idle = threading.Event()
        self._idle.set()
        self._generating = False
        self._pending: Optional[list[DrawingObject]] = None
        self._progress = GenerationProgress()
        self._result: Optional[DesignToolpaths] = None
        self._thread: Optional[threading.Thread] = None

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> WorkerState:
        return WorkerState.GENERATING if self.is_generating else WorkerState.IDLE

    @property
    def is_generating(self) -> bool:
        with self._lock:
            return self._generating

    @property
    def has_pending(self) -> bool:
        with self._lock:
            return self._pending is not None

    def progress(self) -> GenerationProgress:
        with self._lock:
            return self._progress

    def result(self) -> Optional[DesignToolpaths]:
        """Most recent completed (non-cancelled) result."""
        with self._lock:
            return self._result

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------

    def request(self, objects: Iterable[DrawingObject]) -> bool:
        """Start generating *objects*, or queue them behind the running job.

        Returns
        -------
        bool
            ``True`` when generation started now, ``False`` when queued.
        """
        objs = list(objects)
        with self._lock:
            if self._generating:
                self._pending = objs
                logger.debug("Generation queued (%d objects)", len(objs))
                return False
            self._generating = True
            self._cancel.clear()
            self._idle.clear()
            self._progress = GenerationProgress(0, len(objs))

        self._thread = threading.Thread(
            target=self._run, args=(objs,), name="toolpath-worker", daemon=True,
        )
        self._thread.start()
        return True

    def cancel(self) -> None:
        """Abort the running generation at the next object boundary."""
        with self._lock:
            self._pending = None
            if not self._generating:
                return
        self._cancel.set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until idle; ``False`` on timeout."""
        return self._idle.wait(timeout)

    # ------------------------------------------------------------------
    # Thread body
    # ------------------------------------------------------------------

    def _set_progress(self, done: int, total: int) -> None:
        with self._lock:
            self._progress = GenerationProgress(done, total)

    def _generate(self, objects: list[DrawingObject]) -> Optional[DesignToolpaths]:
        try:
            return self._gen.generate_design(
                objects,
                should_cancel=self._cancel.is_set,
                on_progress=self._set_progress,
            )
        except GenerationCancelled as exc:
            logger.info("%s", exc)
        except Exception:  # noqa: BLE001
            logger.exception("Generation failed (%d objects)", len(objects))
        return None

    def _publish(self, result: Optional[DesignToolpaths]) -> None:
        if result is None:
            return
        with self._lock:
            self._result = result
        if self._on_complete is not None:
            try:
                self._on_complete(result)
            except Exception as exc:  # noqa: BLE001
                logger.error("Generation callback error: %s", exc)

    def _run(self, objects: list[DrawingObject]) -> None:
        finished = False
        try:
            while True:
                self._publish(self._generate(objects))
                with self._lock:
                    if self._pending is not None:
                        # Queued after any cancel, so it still runs
                        objects, self._pending = self._pending, None
                        self._cancel.clear()
                        self._progress = GenerationProgress(0, len(objects))
                        continue
                    self._generating = False
                    self._cancel.clear()
                    self._idle.set()
                    finished = True
                    return
        finally:
            if not finished:
                with self._lock:
                    self._generating = False
                    self._pending = None
                    self._cancel.clear()
                    self._idle.set()
