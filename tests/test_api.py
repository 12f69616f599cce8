import pytest
from fastapi.testclient import TestClient

from api.app import SESSION_COOKIE, create_app
from school_cbt.services.exam_catalog import ExamCatalog
from school_cbt.services.storage import MemoryStore
from conftest import make_exam_dict, write_exam

STUDENT = {"name": "Ada Obi", "seat_number": "A12", "class_name": "JSS1"}


@pytest.fixture()
def api_store():
    return MemoryStore()


@pytest.fixture()
def catalog(tmp_path):
    return ExamCatalog(str(tmp_path / "exams"))


@pytest.fixture()
def client(api_store, catalog):
    with TestClient(create_app(store=api_store, catalog=catalog)) as c:
        yield c


def start(client, **settings):
    write_exam(client.app.state.catalog.exams_dir, make_exam_dict(**settings))
    return client.post("/api/start-exam", json={"student": STUDENT, "exam_file": "math-jss1.json"})


def test_start_exam_and_read_state(client):
    resp = start(client)
    assert resp.status_code == 200
    assert resp.json() == {"total": 2, "time_left": 1800, "ok": True}

    state = client.get("/api/exam-state").json()
    assert state["is_submitted"] is False
    assert state["question_ids"] == ["Q001", "Q002"]
    assert state["unanswered"] == 2
    assert state["violations"] == 0


def test_question_never_reveals_correct_option(client):
    start(client)
    q = client.get("/api/question/0").json()

    assert q["id"] == "Q001"
    assert "correct_option" not in q
    assert "correctAnswer" not in q
    assert client.get("/api/question/9").status_code == 404


def test_exam_list_comes_from_manifest(client, catalog):
    assert client.get("/api/exams").status_code == 503

    write_exam(catalog.exams_dir, make_exam_dict())
    assert client.get("/api/exams").json() == {
        "exams": [{"filename": "math-jss1.json", "title": "JSS1 Mathematics"}],
    }


def test_unknown_exam_file_is_not_found(client, catalog):
    write_exam(catalog.exams_dir, make_exam_dict())
    resp = client.post("/api/start-exam", json={"student": STUDENT, "exam_file": "../secret.json"})
    assert resp.status_code == 404


def test_invalid_exam_file_is_rejected(client, catalog):
    exam = make_exam_dict()
    del exam["examId"]
    write_exam(catalog.exams_dir, exam)

    resp = client.post("/api/start-exam", json={"student": STUDENT, "exam_file": "math-jss1.json"})
    assert resp.status_code == 422


def test_exam_definition_is_not_accepted_from_browser(client):
    resp = client.post("/api/start-exam", json={"student": STUDENT, "exam": make_exam_dict()})
    assert resp.status_code == 422


def test_second_start_conflicts(client):
    start(client)
    assert start(client).status_code == 409


def test_answer_navigate_submit_and_results(client):
    start(client)
    assert client.post("/api/save-answer", json={"question_id": "Q001", "answer": "B"}).json()["answered_count"] == 1
    assert client.post("/api/save-answer", json={"question_id": "Q002", "answer": "Z"}).status_code == 422
    assert client.post("/api/navigate", json={"index": 10}).json()["index"] == 1

    assert client.get("/api/results").status_code == 400

    resp = client.post("/api/submit-exam")
    assert resp.status_code == 200
    assert resp.json()["submission_id"].startswith("SUB-")
    assert client.post("/api/submit-exam").status_code == 400
    assert client.post("/api/save-answer", json={"question_id": "Q002", "answer": "C"}).status_code == 400

    results = client.get("/api/results").json()
    assert results["submission_type"] == "manual"
    assert results["scoring"]["obtainedMarks"] == 5
    assert results["scoring"]["percentage"] == 33.33
    assert results["scoring"]["passed"] is False
    assert [q["id"] for q in results["incorrect_questions"]] == ["Q002"]


def test_hidden_results(client):
    start(client, showResults=False, allowReview=False)
    client.post("/api/submit-exam")

    results = client.get("/api/results").json()
    assert "scoring" not in results
    assert "incorrect_questions" not in results


def test_signals_record_violations_and_queue_notices(client):
    start(client)
    resp = client.post("/api/signal", json={"type": "visibilitychange", "hidden": True})
    assert resp.json() == {"violations": 1, "is_submitted": False}

    # 같은 순간의 blur는 디바운스로 병합된다
    resp = client.post("/api/signal", json={"type": "blur", "hidden": False})
    assert resp.json()["violations"] == 1

    state = client.get("/api/exam-state").json()
    assert len(state["notices"]) == 1
    assert client.get("/api/exam-state").json()["notices"] == []


def test_violation_threshold_auto_submits(client):
    start(client, violationThreshold=1)
    resp = client.post("/api/signal", json={"type": "visibilitychange", "hidden": True})
    assert resp.json() == {"violations": 1, "is_submitted": True}

    results = client.get("/api/results").json()
    assert results["submission_type"] == "auto-violation"
    assert results["violations"] == 1


def test_fullscreen_request_is_exposed_and_resolved(client):
    start(client)
    assert client.get("/api/exam-state").json()["fullscreen_requested"] is True

    resp = client.post("/api/fullscreen-result", json={"success": True})
    assert resp.json() == {"ok": True, "resolved": True}
    assert client.post("/api/fullscreen-result", json={"success": True}).json()["resolved"] is False


def test_resume_after_server_restart(api_store, catalog):
    with TestClient(create_app(store=api_store, catalog=catalog)) as first:
        start(first)
        first.post("/api/save-answer", json={"question_id": "Q002", "answer": "C"})
        sid = first.cookies.get(SESSION_COOKIE)

    with TestClient(create_app(store=api_store, catalog=catalog), cookies={SESSION_COOKIE: sid}) as second:
        status = second.get("/api/resume-status").json()
        assert status == {
            "resumable": True,
            "active": False,
            "student_name": "Ada Obi",
            "subject": "Mathematics",
        }

        resp = second.post("/api/resume")
        assert resp.status_code == 200
        assert second.get("/api/exam-state").json()["answers"] == {"Q002": "C"}


def test_resume_without_snapshot(client):
    assert client.get("/api/resume-status").json() == {"resumable": False, "active": False}
    assert client.post("/api/resume").status_code == 404


def test_resume_dismiss_discards_snapshot(api_store, catalog):
    with TestClient(create_app(store=api_store, catalog=catalog)) as first:
        start(first)
        sid = first.cookies.get(SESSION_COOKIE)

    with TestClient(create_app(store=api_store, catalog=catalog), cookies={SESSION_COOKIE: sid}) as second:
        assert second.post("/api/resume-dismiss").json() == {"ok": True}
        assert second.get("/api/resume-status").json()["resumable"] is False


def test_reset_clears_exam_session(client):
    start(client)
    client.post("/api/reset")
    assert client.get("/api/exam-state").status_code == 404
