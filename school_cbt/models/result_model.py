"""
models/result_model.py

제출 결과 문서(ResultDocument)와 무결성 위반 기록 모델.
결과 문서의 필드명(camelCase)은 채점/집계 도구가 그대로 읽으므로 바꾸지 않는다.
"""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from school_cbt.models.question_model import OptionKey


class ViolationType(str, Enum):
    TAB_SWITCH = "tab-switch"
    WINDOW_BLUR = "window-blur"
    FULLSCREEN_EXIT = "fullscreen-exit"


class SubmissionType(str, Enum):
    MANUAL = "manual"
    AUTO_TIMEOUT = "auto-timeout"
    AUTO_VIOLATION = "auto-violation"


class ViolationRecord(BaseModel):
    type: ViolationType
    timestamp: str

    model_config = {"frozen": True}


class IntegritySnapshot(BaseModel):
    violations: int = 0
    violation_log: List[ViolationRecord] = Field(default_factory=list, alias="violationLog")

    model_config = {"populate_by_name": True, "frozen": True}


class AnswerOutcome(BaseModel):
    question_id: str = Field(..., alias="questionId")
    selected_option: Optional[OptionKey] = Field(None, alias="selectedOption")
    is_correct: bool = Field(..., alias="isCorrect")
    marks_awarded: int = Field(..., alias="marksAwarded")

    model_config = {"populate_by_name": True, "frozen": True}


class ScoringSummary(BaseModel):
    total_questions: int = Field(..., alias="totalQuestions")
    attempted: int = Field(..., alias="attemptedQuestions")
    correct: int = Field(..., alias="correctAnswers")
    wrong: int = Field(..., alias="wrongAnswers")
    unanswered: int = Field(..., alias="unansweredQuestions")
    total_marks: int = Field(..., alias="totalMarks")
    obtained_marks: int = Field(..., alias="obtainedMarks")
    percentage: float
    passed: bool

    model_config = {"populate_by_name": True, "frozen": True}


class StudentSnapshot(BaseModel):
    full_name: str = Field(..., alias="fullName")
    registration_number: str = Field("", alias="registrationNumber")
    class_name: str = Field("", alias="class")

    model_config = {"populate_by_name": True, "frozen": True}


class ExamReference(BaseModel):
    exam_id: str = Field(..., alias="examId")
    title: Optional[str] = None
    subject: Optional[str] = None
    term: Optional[str] = None
    academic_year: Optional[str] = Field(None, alias="academicYear")

    model_config = {"populate_by_name": True, "frozen": True}


class ResultTiming(BaseModel):
    started_at: Optional[str] = Field(None, alias="startedAt")
    submitted_at: Optional[str] = Field(None, alias="submittedAt")
    duration_allowed: int = Field(..., alias="durationAllowed")
    duration_used: int = Field(..., alias="durationUsed")

    model_config = {"populate_by_name": True, "frozen": True}


class SubmissionInfo(BaseModel):
    type: SubmissionType
    client_timestamp: str = Field(..., alias="clientTimestamp")

    model_config = {"populate_by_name": True, "frozen": True}


class ResultDocument(BaseModel):
    """제출 시점에 한 번 만들어지고 이후 변경되지 않는 결과 문서."""

    submission_id: str = Field(..., alias="submissionId")
    version: str = "1.0.0"
    student: StudentSnapshot
    exam: ExamReference
    answers: List[AnswerOutcome]
    scoring: ScoringSummary
    timing: ResultTiming
    submission: SubmissionInfo
    integrity: IntegritySnapshot

    model_config = {"populate_by_name": True, "frozen": True}

    def to_payload(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class SubmissionOutcome(BaseModel):
    success: bool
    submission_id: str = Field(..., alias="submissionId")
    timestamp: str
    error: Optional[str] = None

    model_config = {"populate_by_name": True}
