"""
api/routes.py — FastAPI 엔드포인트

브라우저 프런트엔드는 이 API만으로 시험을 진행한다.
시험 목록 → 로그인/이어하기 → 문제 조회/답안 저장/이동 → 환경 신호 전달 → 제출 → 결과.
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, Field

from config import STORAGE_KEY, WEBHOOK_URL
import api.session as session
from school_cbt.models.question_model import Question
from school_cbt.models.session_state import StudentInfo
from school_cbt.services.exam_catalog import ExamCatalogError, ExamNotFoundError
from school_cbt.services.exam_service import answer_summary, get_incorrect_questions
from school_cbt.services.exam_session import ExamSession
from school_cbt.services.platform import SignalType
from school_cbt.services.submission import SubmissionPipeline, WebhookSink

router = APIRouter()

# ── Pydantic request bodies ──────────────────────────────────────────────────

class StudentBody(BaseModel):
    name: str = Field(..., min_length=1)
    seat_number: str = ""
    class_name: str = ""

class StartExamBody(BaseModel):
    student: StudentBody
    exam_file: str = Field(..., min_length=1)

class SaveAnswerBody(BaseModel):
    question_id: str
    answer: Optional[str] = None

class NavigateBody(BaseModel):
    index: int = 0

class SignalBody(BaseModel):
    type: SignalType
    hidden: bool = False
    in_fullscreen: bool = False

class FullscreenResultBody(BaseModel):
    success: bool


# ── 헬퍼 ─────────────────────────────────────────────────────────────────────

def _browser(request: Request) -> Dict[str, Any]:
    state = session.get_session(request.state.session_id)
    if state is None:
        raise HTTPException(status_code=404, detail="브라우저 세션이 만료되었습니다.")
    return state


def _new_exam_session(request: Request, state: Dict[str, Any]) -> ExamSession:
    store = request.app.state.store
    sink = WebhookSink(WEBHOOK_URL) if WEBHOOK_URL else None
    return ExamSession(
        store=store,
        pipeline=SubmissionPipeline(store, sink=sink),
        signals=state["signals"],
        fullscreen=state["fullscreen"],
        notifier=state["notices"],
        snapshot_key=f"{STORAGE_KEY}:{request.state.session_id}",
    )


def _exam_session(request: Request) -> ExamSession:
    controller: Optional[ExamSession] = _browser(request).get("exam_session")
    if controller is None or controller.state is None:
        raise HTTPException(status_code=404, detail="시험 세션이 없습니다.")
    return controller


def _active_exam_session(request: Request) -> ExamSession:
    controller = _exam_session(request)
    if controller.submitted:
        raise HTTPException(status_code=400, detail="이미 제출된 시험입니다.")
    return controller


def _question_to_dict(q: Question) -> dict:
    # 정답은 응시 중에 절대 내려보내지 않는다
    return {
        "id": q.id,
        "number": q.number,
        "text": q.text,
        "options": dict(q.options),
        "marks": q.marks,
    }


def _violation_count(controller: ExamSession) -> int:
    if controller.result is not None:
        return controller.result.integrity.violations
    return controller.monitor.count if controller.monitor is not None else 0


def _start_clock(controller: ExamSession) -> None:
    controller.start_ticking()
    if controller.monitor is not None:
        controller.monitor.request_fullscreen()


# ── 엔드포인트 ───────────────────────────────────────────────────────────────

@router.get("/api/exams")
async def list_exams(request: Request):
    try:
        entries = request.app.state.catalog.list_exams()
    except ExamCatalogError:
        raise HTTPException(status_code=503, detail="시험 목록을 불러오지 못했습니다. 관리자에게 문의하세요.")
    return {"exams": [{"filename": e.filename, "title": e.title} for e in entries]}


@router.post("/api/start-exam")
async def start_exam(body: StartExamBody, request: Request):
    state = _browser(request)
    current: Optional[ExamSession] = state.get("exam_session")
    if current is not None and current.is_active:
        raise HTTPException(status_code=409, detail="이미 진행 중인 시험이 있습니다.")

    name = body.student.name.strip()
    if not name:
        raise HTTPException(status_code=400, detail="이름을 입력해 주세요.")

    try:
        exam = request.app.state.catalog.load_exam(body.exam_file)
    except ExamNotFoundError:
        raise HTTPException(status_code=404, detail="선택한 시험을 찾을 수 없습니다.")
    except ExamCatalogError as e:
        raise HTTPException(status_code=422, detail=str(e))

    controller = _new_exam_session(request, state)
    exam_state = controller.start_session(
        exam,
        StudentInfo(name=name, seat_number=body.student.seat_number, class_name=body.student.class_name),
    )
    session.put(request.state.session_id, "exam_session", controller)
    _start_clock(controller)
    return {
        "total": len(exam.questions),
        "time_left": exam_state.time_left,
        "ok": True,
    }


@router.get("/api/resume-status")
async def resume_status(request: Request):
    state = _browser(request)
    current: Optional[ExamSession] = state.get("exam_session")
    if current is not None and current.is_active:
        return {"resumable": False, "active": True}

    saved = _new_exam_session(request, state).load_snapshot()
    if saved is None:
        return {"resumable": False, "active": False}
    return {
        "resumable": True,
        "active": False,
        "student_name": saved.student.name,
        "subject": saved.exam.metadata.subject or "과목 미지정",
    }


@router.post("/api/resume")
async def resume_exam(request: Request):
    state = _browser(request)
    current: Optional[ExamSession] = state.get("exam_session")
    if current is not None and current.is_active:
        raise HTTPException(status_code=409, detail="이미 진행 중인 시험이 있습니다.")

    controller = _new_exam_session(request, state)
    restored = controller.restore_snapshot()
    if restored is None:
        raise HTTPException(status_code=404, detail="이어할 시험이 없습니다. 새로 시작해 주세요.")

    session.put(request.state.session_id, "exam_session", controller)
    _start_clock(controller)
    return {
        "total": len(restored.exam.questions),
        "index": restored.current_question_index,
        "time_left": restored.time_left,
        "ok": True,
    }


@router.post("/api/resume-dismiss")
async def resume_dismiss(request: Request):
    state = _browser(request)
    _new_exam_session(request, state).discard_snapshot()
    return {"ok": True}


@router.get("/api/question/{index}")
async def get_question(index: int, request: Request):
    controller = _exam_session(request)
    questions = controller.state.exam.questions
    if not (0 <= index < len(questions)):
        raise HTTPException(status_code=404, detail="문제를 찾을 수 없습니다.")

    q = questions[index]
    d = _question_to_dict(q)
    d.update({
        "saved_answer": controller.state.answers.get(q.id),
        "index": index,
        "total": len(questions),
    })
    return d


@router.get("/api/exam-state")
async def get_exam_state(request: Request):
    state = _browser(request)
    controller = _exam_session(request)
    exam_state = controller.state
    violations = _violation_count(controller)

    return {
        "current_question_index": exam_state.current_question_index,
        "answers": dict(exam_state.answers),
        "time_left": exam_state.time_left,
        "is_submitted": exam_state.submitted,
        "total": len(exam_state.exam.questions),
        **answer_summary(exam_state.exam, exam_state.answers),
        "question_ids": exam_state.exam.question_ids(),
        "violations": violations,
        "violation_threshold": exam_state.exam.settings.violation_threshold,
        "notices": state["notices"].drain(),
        "fullscreen_requested": state["fullscreen"].requested,
    }


@router.post("/api/save-answer")
async def save_answer(body: SaveAnswerBody, request: Request):
    controller = _active_exam_session(request)
    try:
        controller.record_answer(body.question_id, body.answer or None)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return {"ok": True, "answered_count": controller.state.answered_count()}


@router.post("/api/navigate")
async def navigate(body: NavigateBody, request: Request):
    controller = _exam_session(request)
    idx = controller.navigate(body.index)
    return {"index": idx, "ok": True}


@router.post("/api/signal")
async def report_signal(body: SignalBody, request: Request):
    state = _browser(request)
    signals = state["signals"]
    if body.type is SignalType.VISIBILITY_CHANGE:
        signals.emit(body.type, hidden=body.hidden)
    elif body.type is SignalType.BLUR:
        signals.emit(body.type, document_hidden=body.hidden)
    else:
        signals.emit(body.type, in_fullscreen=body.in_fullscreen)

    controller: Optional[ExamSession] = state.get("exam_session")
    if controller is None or controller.state is None:
        return {"violations": 0, "is_submitted": False}
    violations = _violation_count(controller)
    return {"violations": violations, "is_submitted": controller.submitted}


@router.post("/api/fullscreen-result")
async def fullscreen_result(body: FullscreenResultBody, request: Request):
    resolved = _browser(request)["fullscreen"].resolve(body.success)
    return {"ok": True, "resolved": resolved}


@router.post("/api/submit-exam")
async def submit_exam(request: Request):
    controller = _active_exam_session(request)
    result = controller.submit(forced=False)
    if result is None:
        raise HTTPException(status_code=400, detail="이미 제출된 시험입니다.")
    return {"submission_id": result.submission_id, "ok": True}


@router.get("/api/results")
async def get_results(request: Request):
    controller = _exam_session(request)
    if not controller.submitted or controller.result is None:
        raise HTTPException(status_code=400, detail="시험이 아직 제출되지 않았습니다.")

    result = controller.result
    exam = controller.state.exam
    data: Dict[str, Any] = {
        "submission_id": result.submission_id,
        "submission_type": result.submission.type.value,
        "student_name": result.student.full_name,
        "subject": result.exam.subject,
        "total": result.scoring.total_questions,
        "violations": result.integrity.violations,
        "show_results": exam.settings.show_results,
    }
    if exam.settings.show_results:
        data["scoring"] = result.scoring.model_dump(by_alias=True)
    if exam.settings.allow_review:
        answers = controller.state.answers
        incorrect = []
        for q in get_incorrect_questions(exam, answers):
            d = _question_to_dict(q)
            d.update({"user_answer": answers.get(q.id), "correct_option": q.correct_option})
            incorrect.append(d)
        data["incorrect_questions"] = incorrect

    outcome = controller.outcome
    data["delivery"] = outcome.model_dump(by_alias=True) if outcome is not None else None
    return data


@router.post("/api/reset")
async def reset_session(request: Request):
    session.reset(request.state.session_id)
    return {"ok": True}
