import asyncio
import logging
from datetime import datetime
from typing import Callable, Dict, Optional

from .config import AUTOSAVE_INTERVAL_SECONDS
from .errors import AutosaveFailure
from .scoring_engine import utcnow

logger = logging.getLogger(__name__)


class AutosaveScheduler:
    """Per-answer and periodic bulk saves of in-progress answers.

    ``backend`` must provide ``save_response(exam_id, question_id, option)``
    and ``save_responses(exam_id, answers)`` coroutines. Failures are
    recorded in ``last_error`` and never interrupt the attempt.
    """

    def __init__(
        self,
        backend,
        exam_id: int,
        answers_provider: Callable[[], Dict[int, Optional[str]]],
        interval: float = AUTOSAVE_INTERVAL_SECONDS,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.backend = backend
        self.exam_id = exam_id
        self.answers_provider = answers_provider
        self.interval = interval
        self.clock = clock

        self.saving = False
        self.last_saved_at: Optional[datetime] = None
        self.last_error: Optional[AutosaveFailure] = None

    def _succeeded(self):
        self.last_saved_at = self.clock()
        self.last_error = None

    def _failed(self, prefix: str, e: Exception):
        logger.warning("%s for exam %s: %s", prefix, self.exam_id, e)
        self.last_error = AutosaveFailure(f"{prefix}: {e}")

    async def save_answer(self, question_id: int, option: Optional[str]) -> bool:
        try:
            await self.backend.save_response(self.exam_id, question_id, option)
        except Exception as e:
            self._failed("Auto-save failed", e)
            return False

        self._succeeded()
        return True

    async def save_all(self) -> bool:
        answers = dict(self.answers_provider())
        if not answers:
            return True

        self.saving = True
        try:
            await self.backend.save_responses(self.exam_id, answers)
        except Exception as e:
            self._failed("Periodic auto-save failed", e)
            return False
        finally:
            self.saving = False

        self._succeeded()
        return True

    async def run(self, is_active: Callable[[], bool], is_done: Optional[Callable[[], bool]] = None):
        """Bulk-save every ``interval`` seconds while ``is_active()``.

        Without ``is_done`` the loop ends the first time the attempt is
        inactive. With it, inactive ticks are skipped (a submission in
        flight may still fail) and the loop ends once ``is_done()``.
        """
        while True:
            await asyncio.sleep(self.interval)
            if is_done is not None and is_done():
                return
            if not is_active():
                if is_done is None:
                    return
                continue
            await self.save_all()
