"""
models/session_state.py

시험 진행 상태를 담는 OMR 카드 모델.
Pydantic BaseModel 기반 — 스냅샷 직렬화/역직렬화 및 타입 안전성 확보.
UI 코드 없음.
"""

from typing import Dict, Optional

from pydantic import BaseModel, Field

from school_cbt.models.question_model import ExamDefinition, OptionKey


class StudentInfo(BaseModel):
    name: str = Field(..., description="응시자 이름")
    seat_number: str = Field("", alias="seatNumber")
    class_name: str = Field("", alias="class")
    subject: str = ""

    model_config = {"populate_by_name": True}


class SessionTiming(BaseModel):
    started_at: Optional[str] = Field(None, alias="startedAt")
    submitted_at: Optional[str] = Field(None, alias="submittedAt")
    duration_allowed: int = Field(0, alias="durationAllowed", description="허용 시간 (분)")

    model_config = {"populate_by_name": True}


class SessionSnapshot(BaseModel):
    """
    크래시/새로고침 복구용으로 저장되는 세션 상태.

    Attributes:
        student:                응시자 정보.
        exam:                   시험지 전체 (복구 시 다시 불러오지 않아도 되도록 포함).
        current_question_index: 현재 보고 있는 문제 인덱스 (0-based).
        answers:                답안지. {question.id: 선택한 보기 문자}
        time_left:              남은 시간 (초).
        timing:                 시작/제출 시각과 허용 시간.
    """

    student: StudentInfo
    exam: ExamDefinition
    current_question_index: int = Field(0, alias="currentQIndex", ge=0)
    answers: Dict[str, Optional[OptionKey]] = Field(default_factory=dict)
    time_left: int = Field(0, alias="timeLeft", ge=0)
    timing: SessionTiming = Field(default_factory=SessionTiming)

    model_config = {"populate_by_name": True}


class SessionState(SessionSnapshot):
    """진행 중인 세션. submitted는 False → True 로 한 번만 바뀐다."""

    submitted: bool = Field(
        default=False,
        description="최종 제출 완료 여부"
    )

    def to_snapshot_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude={"submitted"})

    def answered_count(self) -> int:
        return sum(1 for v in self.answers.values() if v is not None)
