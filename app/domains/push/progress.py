"""Progress reporting for a single dispatch."""

import logging
from collections.abc import Callable

from app.schemas.push import DispatchPhase, PushProgress


logger = logging.getLogger(__name__)

ProgressCallback = Callable[[PushProgress], None]


class ProgressReporter:
    """Hands snapshots to an optional callback, never moving the phase backwards.

    Callbacks are UI hints: an exception raised by the callback is logged and
    does not affect the dispatch.
    """

    def __init__(self, callback: ProgressCallback | None = None):
        self.callback = callback
        self.phase: DispatchPhase | None = None

    def emit(self, progress: PushProgress) -> None:
        if self.phase is not None and progress.phase.rank < self.phase.rank:
            raise ValueError(f"Progress phase cannot move from {self.phase.value} to {progress.phase.value}")
        self.phase = progress.phase

        if self.callback is None:
            return
        try:
            self.callback(progress.model_copy(deep=True))
        except Exception as e:
            logger.warning(f"Progress callback failed during {progress.phase.value}: {str(e)}")


__all__ = ["ProgressReporter", "ProgressCallback"]
