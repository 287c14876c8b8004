import logging
from typing import Any, List, Optional

from fastapi import FastAPI, HTTPException, Depends, Request
from fastapi.exception_handlers import request_validation_exception_handler
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from jose import jwt, JWTError
from sqlalchemy.orm import Session

from coursework.config import LOG_LEVEL, OPTIONS
from coursework.errors import PortalError, InvalidRequest
from coursework.question_bank import QuestionBank
from coursework.response_store import ResponseStore
from coursework.scoring_engine import ScoringEngine
from coursework.results import get_result, list_tests
from coursework.batch_allotment import allot_batch

from auth.security import (
    hash_password,
    verify_password,
    create_access_token,
    create_refresh_token,
    REFRESH_SECRET_KEY,
    ALGORITHM,
)
from auth.schemas import RegisterSchema, LoginSchema, RefreshRequest, LogoutRequest, UserPublic
from auth.dependencies import get_db, get_current_user, get_current_student, get_current_admin

from db.init_db import init_db
from db.models.users import User
from db.models.refresh_tokens import RefreshToken

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("coursework.api")


app = FastAPI(
    title="Coursework Portal API",
    version="1.0.0",
    description="Timed tests with autosave and scoring, results, and batch allotment.",
)

@app.on_event("startup")
def create_tables():
    init_db()


@app.exception_handler(PortalError)
async def portal_error_handler(request: Request, exc: PortalError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.message},
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    if request.url.path == "/submit_test":
        return JSONResponse(
            status_code=400,
            content={"success": False, "error": "Malformed submission body"},
        )
    return await request_validation_exception_handler(request, exc)


# ============ Request models ============

class ResponseEntry(BaseModel):
    question_id: Any = None
    selected_option: Optional[str] = None


class SubmitTestRequest(BaseModel):
    # everything optional here so missing fields reach the scoring engine
    # and come back as InvalidRequest in the {success, error} shape
    student_id: Optional[Any] = None
    exam_id: Optional[Any] = None
    started_at: Optional[str] = None
    responses: Optional[List[ResponseEntry]] = None


class SaveResponseRequest(BaseModel):
    selected_option: Optional[str] = None


class SaveResponsesRequest(BaseModel):
    responses: List[ResponseEntry]


class AllotBatchRequest(BaseModel):
    email: Optional[str] = None
    batch_id: Optional[Any] = None
    student_name: Optional[str] = None
    phone: Optional[str] = None
    payment_id: Optional[Any] = None


def _user_public(user: User) -> UserPublic:
    return UserPublic(
        user_id=user.id,
        email=user.email,
        student_name=user.student_name,
        role=user.role,
        batch_id=user.batch_id,
        account_status=user.account_status,
    )


def _issue_tokens(user: User, db: Session):
    access_token = create_access_token({"sub": str(user.id), "role": user.role})
    refresh_token = create_refresh_token({"sub": str(user.id)})

    db.add(RefreshToken(user_id=user.id, token=refresh_token))
    db.commit()

    return {
        "access_token": access_token,
        "refresh_token": refresh_token,
        "token_type": "bearer",
    }


# ============ Auth ============

@app.post("/register")
def register(data: RegisterSchema, db: Session = Depends(get_db)):
    user = db.query(User).filter(User.email == data.email).first()

    # an allotted student without a password claims the account here
    if user and user.password_hash:
        raise HTTPException(status_code=400, detail="Email already registered")

    if not user:
        user = User(email=data.email, role="student", account_status="active")
        db.add(user)

    user.password_hash = hash_password(data.password)
    if data.student_name:
        user.student_name = data.student_name
    if data.phone:
        user.phone = data.phone

    db.commit()
    db.refresh(user)

    return {
        "message": "User registered successfully",
        "user_id": user.id
    }


@app.post("/login")
def login(data: LoginSchema, db: Session = Depends(get_db)):
    user = db.query(User).filter(User.email == data.email).first()
    if not user or not verify_password(data.password, user.password_hash):
        raise HTTPException(status_code=400, detail="Invalid credentials")

    if user.account_status != "active":
        raise HTTPException(status_code=403, detail="Account suspended")

    return _issue_tokens(user, db)


@app.post("/refresh")
def refresh_token_endpoint(data: RefreshRequest, db: Session = Depends(get_db)):
    refresh_token = data.refresh_token

    try:
        payload = jwt.decode(refresh_token, REFRESH_SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid or expired refresh token")

    user_id = payload.get("sub")
    if user_id is None:
        raise HTTPException(status_code=401, detail="Invalid refresh token payload")

    token_in_db = (
        db.query(RefreshToken)
        .filter(
            RefreshToken.token == refresh_token,
            RefreshToken.user_id == int(user_id),
        )
        .first()
    )
    if not token_in_db:
        raise HTTPException(status_code=401, detail="Refresh token not found or revoked")

    user = db.query(User).filter(User.id == int(user_id)).first()
    if not user:
        raise HTTPException(status_code=401, detail="User not found")

    # rotate: the old refresh token stops working
    new_refresh_token = create_refresh_token({"sub": str(user.id)})
    token_in_db.token = new_refresh_token
    db.commit()

    return {
        "access_token": create_access_token({"sub": str(user.id), "role": user.role}),
        "refresh_token": new_refresh_token,
        "token_type": "bearer",
    }


@app.post("/logout")
def logout(
    data: LogoutRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    token_in_db = db.query(RefreshToken).filter(
        RefreshToken.token == data.refresh_token,
        RefreshToken.user_id == current_user.id
    ).first()

    if not token_in_db:
        return {"message": "Token already invalid or not found"}

    db.delete(token_in_db)
    db.commit()

    return {"message": "Logged out successfully"}


@app.get("/me", response_model=UserPublic)
def get_me(current_user: User = Depends(get_current_user)):
    return _user_public(current_user)


@app.get("/health")
def health_check():
    return {"status": "healthy"}


# ============ Tests ============

@app.get("/exams")
def list_exams(
    current_student: User = Depends(get_current_student),
    db: Session = Depends(get_db),
):
    return {"tests": list_tests(db, current_student.id)}


@app.get("/exams/{exam_id}")
def get_exam_paper(
    exam_id: int,
    current_student: User = Depends(get_current_student),
    db: Session = Depends(get_db),
):
    return QuestionBank(db).get_attempt_paper(exam_id)


@app.get("/exams/{exam_id}/responses")
def get_saved_responses(
    exam_id: int,
    current_student: User = Depends(get_current_student),
    db: Session = Depends(get_db),
):
    question_ids = QuestionBank(db).get_question_ids(exam_id)
    saved = ResponseStore(db).get_responses(current_student.id, question_ids)

    return {
        "responses": [
            {"question_id": qid, "selected_option": saved[qid].selected_option}
            for qid in question_ids
            if qid in saved
        ]
    }


def _check_option(option: Optional[str]):
    if option is not None and option not in OPTIONS:
        raise InvalidRequest(f"Invalid selected_option: {option!r}")


@app.put("/exams/{exam_id}/responses/{question_id}")
def save_response(
    exam_id: int,
    question_id: int,
    data: SaveResponseRequest,
    current_student: User = Depends(get_current_student),
    db: Session = Depends(get_db),
):
    _check_option(data.selected_option)
    if question_id not in QuestionBank(db).get_question_ids(exam_id):
        raise InvalidRequest(f"Question {question_id} is not part of exam {exam_id}")

    # not scored yet: is_correct stays null until submission
    ResponseStore(db).put((current_student.id, question_id), data.selected_option or None)
    return {"success": True}


@app.put("/exams/{exam_id}/responses")
def save_responses(
    exam_id: int,
    data: SaveResponsesRequest,
    current_student: User = Depends(get_current_student),
    db: Session = Depends(get_db),
):
    question_ids = set(QuestionBank(db).get_question_ids(exam_id))

    entries = []
    for entry in data.responses:
        _check_option(entry.selected_option)
        try:
            question_id = int(entry.question_id)
        except (TypeError, ValueError):
            raise InvalidRequest(f"Invalid question_id: {entry.question_id!r}")
        if question_id not in question_ids:
            raise InvalidRequest(f"Question {question_id} is not part of exam {exam_id}")
        entries.append((question_id, entry.selected_option or None, None))

    ResponseStore(db).put_many(current_student.id, entries)
    return {"success": True, "saved": len(entries)}


@app.post("/submit_test")
def submit_test(
    submission: SubmitTestRequest,
    current_student: User = Depends(get_current_student),
    db: Session = Depends(get_db),
):
    if submission.student_id is not None and str(submission.student_id) != str(current_student.id):
        raise InvalidRequest("student_id does not match the signed-in student")

    summary = ScoringEngine(db).submit(
        student_id=current_student.id,
        exam_id=submission.exam_id,
        responses=submission.responses,
        started_at=submission.started_at,
    )

    return {
        "success": True,
        **summary,
        "message": "Test submitted successfully",
    }


@app.get("/exams/{exam_id}/result")
def get_exam_result(
    exam_id: int,
    current_student: User = Depends(get_current_student),
    db: Session = Depends(get_db),
):
    return get_result(db, current_student.id, exam_id)


# ============ Admin ============

@app.post("/admin/allot_batch")
def allot_batch_endpoint(
    data: AllotBatchRequest,
    current_admin: User = Depends(get_current_admin),
    db: Session = Depends(get_db),
):
    result = allot_batch(
        db,
        email=data.email,
        batch_id=data.batch_id,
        student_name=data.student_name,
        phone=data.phone,
        payment_id=data.payment_id,
    )
    return {"success": True, **result}
