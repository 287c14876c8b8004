import logging
from typing import Any, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from db.models.batches import Batch
from db.models.payments import Payment
from db.models.users import User
from .errors import BatchNotFound, InvalidRequest, PersistenceFailure

logger = logging.getLogger(__name__)


def _as_int(value: Any, field: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise InvalidRequest(f"Invalid {field} - must be a number")


def allot_batch(
    db: Session,
    email: Optional[str],
    batch_id: Any,
    student_name: Optional[str],
    phone: Optional[str],
    payment_id: Any = None,
) -> Dict[str, Any]:
    """Assign a student to a batch, creating the account if needed.

    When a payment id is given the payment is marked as access granted.
    """
    if not email or not batch_id or not student_name or not phone:
        raise InvalidRequest("Missing required fields: email, batch_id, student_name, phone")

    batch_id = _as_int(batch_id, "batch_id")
    payment_id = _as_int(payment_id, "payment_id") if payment_id else None

    if not db.query(Batch).filter(Batch.id == batch_id).first():
        raise BatchNotFound(f"Batch {batch_id} not found")

    try:
        user = db.query(User).filter(User.email == email).first()
        created = user is None
        if created:
            user = User(email=email, role="student", account_status="active")
            db.add(user)

        user.student_name = student_name
        user.phone = phone
        user.batch_id = batch_id
        user.payment_id = payment_id

        if payment_id:
            updated = (
                db.query(Payment)
                .filter(Payment.id == payment_id)
                .update({"access_granted": True})
            )
            if not updated:
                db.rollback()
                raise InvalidRequest(f"Payment {payment_id} not found")

        db.commit()
        db.refresh(user)
    except SQLAlchemyError as e:
        db.rollback()
        logger.exception("Batch allotment failed for %s", email)
        raise PersistenceFailure(f"Batch allotment failed: {e}") from e

    logger.info("Allotted %s to batch %s (created=%s)", email, batch_id, created)
    return {
        "created": created,
        "user_id": user.id,
        "message": "Student allotted successfully" if created else "Existing student updated successfully",
    }
