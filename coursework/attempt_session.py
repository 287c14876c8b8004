"""Client side of one timed test attempt.

The session owns the answer state, the countdown and the autosave loop,
and guards submission with an explicit state value:

    NOT_STARTED -> IN_PROGRESS -> SUBMITTING -> SUBMITTED

Only IN_PROGRESS may move to SUBMITTING, so manual submit and timer expiry
cannot both go through. A failed submission returns the session to
IN_PROGRESS so the student can retry; the server writes are idempotent.
"""

import asyncio
import enum
import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Set

from .attempt_timer import AttemptTimer
from .autosave import AutosaveScheduler
from .config import AUTOSAVE_INTERVAL_SECONDS, DEFAULT_EXAM_DURATION_MINUTES, OPTIONS
from .errors import InvalidRequest, PersistenceFailure, PortalError
from .scoring_engine import utcnow

logger = logging.getLogger(__name__)


class AttemptState(enum.Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    SUBMITTING = "submitting"
    SUBMITTED = "submitted"


class AttemptSession:
    def __init__(
        self,
        backend,
        exam_id: int,
        clock: Callable[[], datetime] = utcnow,
        autosave_interval: float = AUTOSAVE_INTERVAL_SECONDS,
        tick_seconds: float = 1.0,
    ):
        self.backend = backend
        self.exam_id = exam_id
        self.clock = clock
        self.autosave_interval = autosave_interval
        self.tick_seconds = tick_seconds

        self.state = AttemptState.NOT_STARTED
        self.exam: Dict[str, Any] = {}
        self.questions: List[Dict[str, Any]] = []
        self.answers: Dict[int, Optional[str]] = {}
        self.marked: Set[int] = set()
        self.current_index = 0
        self.started_at: Optional[datetime] = None

        self.timer: Optional[AttemptTimer] = None
        self.autosave: Optional[AutosaveScheduler] = None
        self.result: Optional[Dict[str, Any]] = None
        self.error: Optional[PortalError] = None

        self._pending_saves: Set[asyncio.Task] = set()

    # ---------- loading ----------

    async def load(self):
        if self.state is not AttemptState.NOT_STARTED:
            raise RuntimeError(f"Cannot load a session in state {self.state.value}")

        paper = await self.backend.load_paper(self.exam_id)
        questions = paper.get("questions") or []
        if not questions:
            raise InvalidRequest("No questions found for this exam.")

        previous = await self.backend.load_responses(self.exam_id)

        answers = {q["question_id"]: None for q in questions}
        for row in previous:
            # ignore rows for questions outside this exam
            if row["question_id"] in answers:
                answers[row["question_id"]] = row.get("selected_option")

        self.exam = paper
        self.questions = questions
        self.answers = answers
        self.started_at = self.clock()

        duration = paper.get("duration_minutes") or DEFAULT_EXAM_DURATION_MINUTES
        self.timer = AttemptTimer(
            duration,
            self.started_at,
            on_expire=self._on_timer_expired,
            clock=self.clock,
            tick_seconds=self.tick_seconds,
        )
        self.autosave = AutosaveScheduler(
            self.backend,
            self.exam_id,
            lambda: self.answers,
            interval=self.autosave_interval,
            clock=self.clock,
        )

        self.state = AttemptState.IN_PROGRESS
        logger.info("Attempt started: exam=%s questions=%s", self.exam_id, len(questions))

    # ---------- answering & navigation ----------

    @property
    def is_active(self) -> bool:
        return self.state is AttemptState.IN_PROGRESS

    @property
    def current_question(self) -> Dict[str, Any]:
        return self.questions[self.current_index]

    def answer(self, question_id: int, option: Optional[str]) -> Optional[asyncio.Task]:
        if not self.is_active:
            return None
        if question_id not in self.answers:
            raise InvalidRequest(f"Question {question_id} is not part of this exam")
        if option is not None and option not in OPTIONS:
            raise InvalidRequest(f"Invalid option: {option!r}")

        self.answers[question_id] = option

        task = asyncio.get_running_loop().create_task(self.autosave.save_answer(question_id, option))
        self._pending_saves.add(task)
        task.add_done_callback(self._pending_saves.discard)
        return task

    def select(self, option: str) -> Optional[asyncio.Task]:
        return self.answer(self.current_question["question_id"], option)

    def toggle_mark(self, question_id: Optional[int] = None) -> bool:
        if question_id is None:
            question_id = self.current_question["question_id"]
        if question_id in self.marked:
            self.marked.discard(question_id)
            return False
        self.marked.add(question_id)
        return True

    def go_to(self, index: int):
        self.current_index = min(max(index, 0), len(self.questions) - 1)

    def next(self):
        self.go_to(self.current_index + 1)

    def previous(self):
        self.go_to(self.current_index - 1)

    def answered_count(self) -> int:
        return sum(1 for option in self.answers.values() if option)

    def status_of(self, question_id: int) -> str:
        if self.questions and question_id == self.current_question["question_id"]:
            return "current"
        if question_id in self.marked:
            return "marked"
        if self.answers.get(question_id):
            return "answered"
        return "unanswered"

    # ---------- submission ----------

    def _payload(self) -> List[Dict[str, Any]]:
        return [
            {"question_id": q["question_id"], "selected_option": self.answers.get(q["question_id"]) or None}
            for q in self.questions
        ]

    async def submit(self, auto: bool = False) -> Optional[Dict[str, Any]]:
        if self.state is not AttemptState.IN_PROGRESS:
            logger.debug("Submit ignored in state %s", self.state.value)
            return None

        self.state = AttemptState.SUBMITTING
        started_at = (self.started_at or self.clock()).isoformat()

        try:
            result = await self.backend.submit_test(self.exam_id, self._payload(), started_at)
        except Exception as e:
            self.state = AttemptState.IN_PROGRESS
            self.error = e if isinstance(e, PortalError) else PersistenceFailure(f"Submission failed: {e}")
            logger.warning("Submission failed for exam %s: %s", self.exam_id, self.error.message)
            raise

        self.state = AttemptState.SUBMITTED
        self.result = result
        self.error = None
        logger.info("Attempt submitted (%s): exam=%s", "auto" if auto else "manual", self.exam_id)
        return result

    async def _on_timer_expired(self):
        try:
            await self.submit(auto=True)
        except Exception:
            # error stays on self.error; the student can retry manually
            pass

    async def run(self):
        """Run the countdown and periodic autosave until the attempt is submitted."""
        if self.state is not AttemptState.IN_PROGRESS:
            raise RuntimeError("Session must be loaded before it runs")

        timer_task = asyncio.ensure_future(self.timer.run())
        autosave_task = asyncio.ensure_future(
            self.autosave.run(
                lambda: self.is_active,
                is_done=lambda: self.state is AttemptState.SUBMITTED,
            )
        )
        try:
            while self.state is not AttemptState.SUBMITTED:
                if timer_task.done() and self.state is AttemptState.IN_PROGRESS:
                    # expired but the automatic submission failed
                    break
                await asyncio.sleep(self.tick_seconds)
        finally:
            for task in (timer_task, autosave_task):
                task.cancel()
            await asyncio.gather(timer_task, autosave_task, return_exceptions=True)
            await self.drain_saves()

    async def drain_saves(self):
        if self._pending_saves:
            await asyncio.gather(*list(self._pending_saves), return_exceptions=True)
