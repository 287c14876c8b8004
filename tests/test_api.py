import time
from datetime import date, datetime, timedelta, timezone

from jose import jwt

from auth.security import create_access_token, create_refresh_token

from db.models.exam_attempts import ExamAttempt
from db.models.payments import Payment
from db.models.student_responses import StudentResponse
from db.models.users import User

from conftest import auth_headers, make_batch, make_exam, make_payment, make_user


def _started(minutes_ago=0):
    return (datetime.now(timezone.utc) - timedelta(minutes=minutes_ago)).isoformat()


def _submit(client, user, exam, questions, options, minutes_ago=0):
    return client.post(
        "/submit_test",
        json={
            "exam_id": exam.id,
            "started_at": _started(minutes_ago),
            "responses": [
                {"question_id": q.id, "selected_option": o}
                for q, o in zip(questions, options)
            ],
        },
        headers=auth_headers(user),
    )


# ---------- auth ----------

def test_register_login_and_me(client):
    res = client.post("/register", json={"email": "neha@example.com", "password": "pw-123", "student_name": "Neha"})
    assert res.status_code == 200

    res = client.post("/login", json={"email": "neha@example.com", "password": "pw-123"})
    assert res.status_code == 200
    tokens = res.json()
    assert tokens["token_type"] == "bearer"

    me = client.get("/me", headers={"Authorization": f"Bearer {tokens['access_token']}"})
    assert me.status_code == 200
    assert me.json()["email"] == "neha@example.com"
    assert me.json()["role"] == "student"


def test_tokens_expire_relative_to_current_utc_time():
    access = jwt.get_unverified_claims(create_access_token({"sub": "1"}, minutes=60))
    refresh = jwt.get_unverified_claims(create_refresh_token({"sub": "1"}, days=7))

    assert access["type"] == "access"
    assert 59 * 60 <= access["exp"] - time.time() <= 60 * 60 + 5
    assert refresh["type"] == "refresh"
    assert 7 * 86400 - 60 <= refresh["exp"] - time.time() <= 7 * 86400 + 5


def test_register_twice_is_rejected(client, student):
    res = client.post("/register", json={"email": student.email, "password": "another"})
    assert res.status_code == 400


def test_allotted_student_claims_account_on_register(client, db):
    make_user(db, email="allotted@example.com", password=None)

    res = client.post("/register", json={"email": "allotted@example.com", "password": "pw-456"})
    assert res.status_code == 200
    assert client.post("/login", json={"email": "allotted@example.com", "password": "pw-456"}).status_code == 200


def test_login_with_wrong_password(client, student):
    res = client.post("/login", json={"email": student.email, "password": "nope"})
    assert res.status_code == 400


def test_refresh_rotates_token(client, student):
    tokens = client.post("/login", json={"email": student.email, "password": "secret123"}).json()

    res = client.post("/refresh", json={"refresh_token": tokens["refresh_token"]})
    assert res.status_code == 200
    rotated = res.json()
    assert rotated["refresh_token"] != tokens["refresh_token"]

    again = client.post("/refresh", json={"refresh_token": tokens["refresh_token"]})
    assert again.status_code == 401


def test_logout_revokes_refresh_token(client, student):
    tokens = client.post("/login", json={"email": student.email, "password": "secret123"}).json()
    headers = {"Authorization": f"Bearer {tokens['access_token']}"}

    res = client.post("/logout", json={"refresh_token": tokens["refresh_token"]}, headers=headers)
    assert res.json()["message"] == "Logged out successfully"
    assert client.post("/refresh", json={"refresh_token": tokens["refresh_token"]}).status_code == 401


def test_requests_without_token_are_rejected(client, db):
    exam, _ = make_exam(db, ["A"])
    assert client.get(f"/exams/{exam.id}").status_code == 401


def test_suspended_student_is_forbidden(client, db):
    user = make_user(db, email="off@example.com", account_status="suspended")
    exam, _ = make_exam(db, ["A"])
    assert client.get(f"/exams/{exam.id}", headers=auth_headers(user)).status_code == 403


# ---------- question bank & autosave ----------

def test_paper_is_ordered_and_hides_correct_options(client, db, student):
    exam, questions = make_exam(db, ["B", "C", "A"], duration_minutes=45)

    res = client.get(f"/exams/{exam.id}", headers=auth_headers(student))

    assert res.status_code == 200
    paper = res.json()
    assert paper["duration_minutes"] == 45
    assert [q["question_id"] for q in paper["questions"]] == [q.id for q in questions]
    assert all("correct_option" not in q for q in paper["questions"])


def test_inactive_or_unknown_exam_is_not_found(client, db, student):
    exam, _ = make_exam(db, ["A"], is_active=False)

    for exam_id in (exam.id, 9999):
        res = client.get(f"/exams/{exam_id}", headers=auth_headers(student))
        assert res.status_code == 404
        assert res.json()["success"] is False


def test_single_answer_autosave_is_an_upsert(client, db, student):
    exam, questions = make_exam(db, ["A", "B"])
    headers = auth_headers(student)
    url = f"/exams/{exam.id}/responses/{questions[0].id}"

    assert client.put(url, json={"selected_option": "C"}, headers=headers).status_code == 200
    assert client.put(url, json={"selected_option": "A"}, headers=headers).status_code == 200

    rows = db.query(StudentResponse).filter_by(user_id=student.id).all()
    assert len(rows) == 1
    assert rows[0].selected_option == "A"
    assert rows[0].is_correct is None

    saved = client.get(f"/exams/{exam.id}/responses", headers=headers).json()
    assert saved == {"responses": [{"question_id": questions[0].id, "selected_option": "A"}]}


def test_bulk_autosave_stores_unanswered_as_null(client, db, student):
    exam, questions = make_exam(db, ["A", "B", "C"])

    res = client.put(
        f"/exams/{exam.id}/responses",
        json={"responses": [
            {"question_id": questions[0].id, "selected_option": "B"},
            {"question_id": questions[1].id, "selected_option": None},
            {"question_id": questions[2].id, "selected_option": None},
        ]},
        headers=auth_headers(student),
    )

    assert res.json() == {"success": True, "saved": 3}
    rows = {r.question_id: r.selected_option for r in db.query(StudentResponse).filter_by(user_id=student.id)}
    assert rows == {questions[0].id: "B", questions[1].id: None, questions[2].id: None}


def test_autosave_rejects_questions_from_other_exams(client, db, student):
    exam, _ = make_exam(db, ["A"])
    _, other_questions = make_exam(db, ["B"], exam_name="Other")

    res = client.put(
        f"/exams/{exam.id}/responses/{other_questions[0].id}",
        json={"selected_option": "B"},
        headers=auth_headers(student),
    )

    assert res.status_code == 400
    assert db.query(StudentResponse).count() == 0


def test_autosave_rejects_unknown_option(client, db, student):
    exam, questions = make_exam(db, ["A"])

    res = client.put(
        f"/exams/{exam.id}/responses/{questions[0].id}",
        json={"selected_option": "Z"},
        headers=auth_headers(student),
    )
    assert res.status_code == 400


# ---------- submission ----------

def test_submit_test_scores_and_reports(client, db, student):
    exam, questions = make_exam(db, ["A", "B", "C"])

    res = _submit(client, student, exam, questions, ["A", "D", None], minutes_ago=12)

    assert res.status_code == 200
    body = res.json()
    assert body["success"] is True
    assert body["score"] == 1
    assert body["total_questions"] == 3
    assert (body["correct"], body["wrong"], body["unanswered"]) == (1, 1, 1)
    assert body["time_taken_minutes"] in (11, 12)


def test_submit_missing_fields_is_bad_request(client, db, student):
    exam, _ = make_exam(db, ["A"])

    res = client.post("/submit_test", json={"exam_id": exam.id}, headers=auth_headers(student))

    assert res.status_code == 400
    assert res.json() == {"success": False, "error": "Missing required fields"}


def test_malformed_submission_body_is_bad_request(client, db, student):
    exam, _ = make_exam(db, ["A"])

    res = client.post(
        "/submit_test",
        json={"exam_id": exam.id, "started_at": _started(), "responses": "A,B,C"},
        headers=auth_headers(student),
    )

    assert res.status_code == 400
    assert res.json()["success"] is False


def test_submit_for_exam_without_questions_is_not_found(client, student):
    res = client.post(
        "/submit_test",
        json={"exam_id": 4242, "started_at": _started(), "responses": []},
        headers=auth_headers(student),
    )

    assert res.status_code == 404
    assert res.json()["success"] is False


def test_submit_for_someone_else_is_rejected(client, db, student):
    exam, questions = make_exam(db, ["A"])

    res = client.post(
        "/submit_test",
        json={
            "student_id": student.id + 100,
            "exam_id": exam.id,
            "started_at": _started(),
            "responses": [{"question_id": questions[0].id, "selected_option": "A"}],
        },
        headers=auth_headers(student),
    )

    assert res.status_code == 400
    assert db.query(ExamAttempt).count() == 0


def test_retake_keeps_a_single_attempt(client, db, student):
    exam, questions = make_exam(db, ["A", "B", "C"])

    assert _submit(client, student, exam, questions, ["A", "D", None]).json()["score"] == 1
    assert _submit(client, student, exam, questions, ["A", "B", "C"]).json()["score"] == 3

    attempts = db.query(ExamAttempt).filter_by(user_id=student.id, exam_id=exam.id).all()
    assert len(attempts) == 1
    assert attempts[0].score == 3


# ---------- results ----------

def test_result_review_merges_questions_and_responses(client, db, student):
    exam, questions = make_exam(db, ["A", "B", "C", "D"])
    _submit(client, student, exam, questions, ["A", "C", None, "D"])

    res = client.get(f"/exams/{exam.id}/result", headers=auth_headers(student))

    assert res.status_code == 200
    result = res.json()
    assert result["attempt"]["score"] == 2
    assert result["accuracy"] == 50
    review = result["review"]
    assert [item["question"]["correct_option"] for item in review] == ["A", "B", "C", "D"]
    assert review[1]["response"] == {"selected_option": "C", "is_correct": False}
    assert review[2]["response"] == {"selected_option": None, "is_correct": None}


def test_result_without_attempt_is_not_found(client, db, student):
    exam, _ = make_exam(db, ["A"])

    res = client.get(f"/exams/{exam.id}/result", headers=auth_headers(student))

    assert res.status_code == 404
    assert res.json() == {"success": False, "error": "No attempt found for this exam."}


def test_test_list_shows_current_attempts_newest_first(client, db, student):
    older, older_questions = make_exam(db, ["A"], exam_name="Older", conducted=date(2026, 1, 10))
    newer, _ = make_exam(db, ["B"], exam_name="Newer", conducted=date(2026, 2, 10))
    make_exam(db, ["C"], exam_name="Hidden", is_active=False)
    _submit(client, student, older, older_questions, ["A"])

    tests = client.get("/exams", headers=auth_headers(student)).json()["tests"]

    assert [t["exam_name"] for t in tests] == ["Newer", "Older"]
    assert tests[0]["attempt"] is None
    assert tests[1]["attempt"]["score"] == 1


# ---------- batch allotment ----------

def test_admin_allots_new_student_and_grants_payment(client, db, admin):
    batch = make_batch(db)
    payment = make_payment(db, batch)

    res = client.post(
        "/admin/allot_batch",
        json={
            "email": "new@example.com",
            "batch_id": str(batch.id),
            "student_name": "Ravi",
            "phone": "9111111111",
            "payment_id": payment.id,
        },
        headers=auth_headers(admin),
    )

    assert res.status_code == 200
    assert res.json()["created"] is True
    db.expire_all()
    user = db.query(User).filter_by(email="new@example.com").one()
    assert user.batch_id == batch.id
    assert user.password_hash is None
    assert db.get(Payment, payment.id).access_granted is True


def test_admin_updates_existing_student(client, db, admin, student):
    batch = make_batch(db, batch_name="lakshya")

    res = client.post(
        "/admin/allot_batch",
        json={"email": student.email, "batch_id": batch.id, "student_name": "Asha K", "phone": "9000000001"},
        headers=auth_headers(admin),
    )

    assert res.json()["created"] is False
    db.expire_all()
    user = db.get(User, student.id)
    assert user.batch_id == batch.id
    assert user.student_name == "Asha K"


def test_allotment_validates_input(client, db, admin):
    headers = auth_headers(admin)

    missing = client.post("/admin/allot_batch", json={"email": "x@example.com"}, headers=headers)
    assert missing.status_code == 400

    bad_batch = client.post(
        "/admin/allot_batch",
        json={"email": "x@example.com", "batch_id": "one", "student_name": "X", "phone": "1"},
        headers=headers,
    )
    assert bad_batch.status_code == 400
    assert "batch_id" in bad_batch.json()["error"]

    unknown = client.post(
        "/admin/allot_batch",
        json={"email": "x@example.com", "batch_id": 77, "student_name": "X", "phone": "1"},
        headers=headers,
    )
    assert unknown.status_code == 404


def test_students_cannot_allot_batches(client, db, student):
    batch = make_batch(db)

    res = client.post(
        "/admin/allot_batch",
        json={"email": "x@example.com", "batch_id": batch.id, "student_name": "X", "phone": "1"},
        headers=auth_headers(student),
    )
    assert res.status_code == 403
