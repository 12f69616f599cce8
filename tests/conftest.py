import copy
import json
import os

import pytest

from school_cbt.models.question_model import ExamDefinition
from school_cbt.models.result_model import IntegritySnapshot, SubmissionOutcome, SubmissionType
from school_cbt.models.session_state import StudentInfo
from school_cbt.services.platform import EnvironmentSignals
from school_cbt.services.storage import MemoryStore

EXAM_DICT = {
    "examId": "MATH-JSS1-T1",
    "version": "1.0.0",
    "metadata": {
        "title": "First Term Examination",
        "subject": "Mathematics",
        "class": "JSS1",
        "term": "First",
        "academicYear": "2026/2027",
    },
    "settings": {
        "duration": 30,
        "totalMarks": 15,
        "passMark": 50,
        "violationThreshold": 3,
        "autoSubmitOnViolation": True,
        "showResults": True,
        "allowReview": True,
    },
    "questions": [
        {
            "questionId": "Q001",
            "questionNumber": 1,
            "questionText": "2 + 3 = ?",
            "options": {"A": "4", "B": "5", "C": "6", "D": "7"},
            "correctAnswer": "B",
            "marks": 5,
        },
        {
            "questionId": "Q002",
            "questionNumber": 2,
            "questionText": "10 - 4 = ?",
            "options": {"A": "4", "B": "5", "C": "6", "D": "7"},
            "correctAnswer": "C",
            "marks": 10,
        },
    ],
}


def make_exam_dict(**settings):
    data = copy.deepcopy(EXAM_DICT)
    data["settings"].update(settings)
    return data


def make_exam(**settings) -> ExamDefinition:
    return ExamDefinition.model_validate(make_exam_dict(**settings))


def write_exam(exams_dir, data, filename="math-jss1.json", title="JSS1 Mathematics"):
    """시험지 파일을 쓰고 manifest에 등록한다."""
    os.makedirs(exams_dir, exist_ok=True)
    manifest_path = os.path.join(exams_dir, "manifest.json")
    entries = []
    if os.path.exists(manifest_path):
        with open(manifest_path, encoding="utf-8") as f:
            entries = [e for e in json.load(f) if e["filename"] != filename]
    entries.append({"filename": filename, "title": title})
    with open(manifest_path, "w", encoding="utf-8") as f:
        json.dump(entries, f)
    with open(os.path.join(exams_dir, filename), "w", encoding="utf-8") as f:
        json.dump(data, f)


class FakeClock:
    """디바운스 테스트용 수동 시계."""

    def __init__(self, start: float = 100.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeFullscreen:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls = 0

    async def request_fullscreen(self, element=None) -> None:
        self.calls += 1
        if self.fail:
            raise RuntimeError("fullscreen denied")


class RecordingPipeline:
    """finalize 호출만 기록하는 제출 파이프라인 대역."""

    def __init__(self):
        self.finalized = []
        self.configured_urls = []

    def configure(self, webhook_url=None, max_retries=None):
        self.configured_urls.append(webhook_url)

    async def finalize(self, result):
        self.finalized.append(result)
        return SubmissionOutcome(
            success=True,
            submission_id=result.submission_id,
            timestamp="2026-10-19T00:00:00.000Z",
        )


@pytest.fixture()
def exam() -> ExamDefinition:
    return make_exam()


@pytest.fixture()
def student() -> StudentInfo:
    return StudentInfo(name="Ada Obi", seat_number="A12", class_name="JSS1")


@pytest.fixture()
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture()
def signals() -> EnvironmentSignals:
    return EnvironmentSignals()


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def pipeline() -> RecordingPipeline:
    return RecordingPipeline()


@pytest.fixture()
def result_document(exam):
    from school_cbt.models.result_model import (
        ExamReference, ResultDocument, ResultTiming, StudentSnapshot, SubmissionInfo,
    )
    from school_cbt.services.exam_service import compute

    summary, outcomes = compute(exam, {"Q001": "B"})
    return ResultDocument(
        submission_id="SUB-20261019-ABC123",
        student=StudentSnapshot(full_name="Ada Obi", registration_number="A12", class_name="JSS1"),
        exam=ExamReference(exam_id=exam.exam_id, title="First Term Examination", subject="Mathematics"),
        answers=outcomes,
        scoring=summary,
        timing=ResultTiming(
            started_at="2026-10-19T09:00:00.000Z",
            submitted_at="2026-10-19T09:10:00.000Z",
            duration_allowed=30,
            duration_used=10,
        ),
        submission=SubmissionInfo(type=SubmissionType.MANUAL, client_timestamp="2026-10-19T09:10:00.000Z"),
        integrity=IntegritySnapshot(),
    )
