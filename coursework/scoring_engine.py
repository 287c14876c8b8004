import logging
import math
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from sqlalchemy.orm import Session

from db.database import utcnow
from .config import OPTIONS
from .errors import ExamNotFound, InvalidRequest
from .question_bank import QuestionBank
from .response_store import AttemptStore, ResponseStore

logger = logging.getLogger(__name__)

CORRECT = "correct"
WRONG = "wrong"
UNANSWERED = "unanswered"


def parse_instant(value: Any) -> datetime:
    """ISO-8601 string (or datetime) -> aware UTC datetime. Naive values are UTC."""
    if isinstance(value, datetime):
        instant = value
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            instant = datetime.fromisoformat(text)
        except ValueError:
            raise InvalidRequest(f"started_at is not an ISO-8601 instant: {value!r}")
    else:
        raise InvalidRequest("started_at is required")

    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=timezone.utc)
    return instant.astimezone(timezone.utc)


def classify(selected: Optional[str], correct_option: str) -> str:
    if not selected:
        return UNANSWERED
    return CORRECT if selected == correct_option else WRONG


def elapsed_minutes(started_at: datetime, submitted_at: datetime) -> int:
    seconds = (submitted_at - started_at).total_seconds()
    return max(0, math.floor(seconds / 60))


def _normalize_responses(responses: Any) -> Dict[int, Optional[str]]:
    if not isinstance(responses, (list, tuple)):
        raise InvalidRequest("responses must be a list")

    selected: Dict[int, Optional[str]] = {}
    for entry in responses:
        if isinstance(entry, dict):
            question_id = entry.get("question_id")
            option = entry.get("selected_option")
        else:
            question_id = getattr(entry, "question_id", None)
            option = getattr(entry, "selected_option", None)

        if question_id is None:
            raise InvalidRequest("Every response needs a question_id")
        try:
            question_id = int(question_id)
        except (TypeError, ValueError):
            raise InvalidRequest(f"Invalid question_id: {question_id!r}")

        if option is not None and option not in OPTIONS:
            raise InvalidRequest(f"Invalid selected_option for question {question_id}: {option!r}")

        selected[question_id] = option or None
    return selected


class ScoringEngine:
    """Scores one submission and records it.

    Responses are upserted on (student, question) and the attempt on
    (student, exam), inside one transaction. Resubmitting the same input
    leaves the same rows behind; a retake overwrites the previous attempt.
    """

    def __init__(self, db: Session, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.clock = clock
        self.question_bank = QuestionBank(db)
        self.responses = ResponseStore(db)
        self.attempts = AttemptStore(db)

    def score(self, answer_key: Dict[int, str], selected: Dict[int, Optional[str]]) -> Tuple[Dict[str, int], List[Tuple[int, Optional[str], Optional[bool]]]]:
        counts = {CORRECT: 0, WRONG: 0, UNANSWERED: 0}
        rows = []

        # only the exam's own questions are scored and written
        for question_id, correct_option in answer_key.items():
            option = selected.get(question_id)
            outcome = classify(option, correct_option)
            counts[outcome] += 1
            is_correct = None if outcome == UNANSWERED else outcome == CORRECT
            rows.append((question_id, option, is_correct))

        return counts, rows

    def submit(self, student_id: Any, exam_id: Any, responses: Iterable[Any], started_at: Any) -> Dict[str, Any]:
        if not student_id or not exam_id or responses is None or not started_at:
            raise InvalidRequest("Missing required fields")

        try:
            student_id = int(student_id)
            exam_id = int(exam_id)
        except (TypeError, ValueError):
            raise InvalidRequest("student_id and exam_id must be integers")

        started = parse_instant(started_at)
        selected = _normalize_responses(responses)

        answer_key = self.question_bank.get_answer_key(exam_id)
        if not answer_key:
            raise ExamNotFound("No questions found for this exam")

        counts, rows = self.score(answer_key, selected)

        submitted = self.clock()
        time_taken = elapsed_minutes(started, submitted)
        total = len(answer_key)

        # one transaction: a failure in either write leaves nothing committed
        self.responses.put_many(student_id, rows, commit=False)
        self.attempts.put(
            (student_id, exam_id),
            {
                "score": counts[CORRECT],
                "total_questions": total,
                "correct_answers": counts[CORRECT],
                "wrong_answers": counts[WRONG],
                "unanswered": counts[UNANSWERED],
                "started_at": started,
                "submitted_at": submitted,
                "time_taken_minutes": time_taken,
            },
        )

        logger.info(
            "Test submitted: user=%s exam=%s score=%s total=%s",
            student_id, exam_id, counts[CORRECT], total,
        )

        return {
            "score": counts[CORRECT],
            "total_questions": total,
            "correct": counts[CORRECT],
            "wrong": counts[WRONG],
            "unanswered": counts[UNANSWERED],
            "time_taken_minutes": time_taken,
        }
