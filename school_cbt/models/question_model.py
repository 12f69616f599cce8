"""
models/question_model.py

시험지(ExamDefinition) 모델.
출제 도구가 만든 JSON(camelCase)을 그대로 받아들인다. Pydantic v2 적용.
한 번 로드된 시험지는 세션 동안 읽기 전용이므로 모두 frozen 모델이다.
"""

from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

OptionKey = Literal["A", "B", "C", "D"]
OPTION_KEYS = ("A", "B", "C", "D")


class Question(BaseModel):
    """
    객관식 문제 모델

    Attributes:
        id:             문제 고유 ID (예: "Q001"). 시험지 내에서 중복 불가.
        number:         화면에 표시되는 문제 번호 (1-based).
        text:           발문.
        options:        {보기 문자(A~D): 보기 내용}
        correct_option: 정답 보기 문자.
        marks:          배점. 비어 있거나 0 이하이면 채점 시 1점으로 취급.
    """

    id: str = Field(..., alias="questionId", min_length=1)
    number: int = Field(..., alias="questionNumber", ge=1)
    text: str = Field(..., alias="questionText", min_length=1)
    options: Dict[OptionKey, str] = Field(
        ...,
        description="보기 매핑. key: A~D, value: 보기 내용"
    )
    correct_option: OptionKey = Field(..., alias="correctAnswer")
    marks: Optional[int] = Field(
        None,
        description="배점 (미지정 시 1점)"
    )

    model_config = {"populate_by_name": True, "frozen": True}

    @field_validator("options")
    @classmethod
    def validate_options_length(cls, v: Dict[str, str]) -> Dict[str, str]:
        """보기는 최소 2개 이상이어야 한다."""
        if len(v) < 2:
            raise ValueError("보기(options)는 최소 2개 이상의 항목이 필요합니다.")
        return v

    @model_validator(mode="after")
    def validate_answer_in_options(self) -> "Question":
        """정답 문자는 반드시 보기 목록에 존재해야 한다."""
        if self.correct_option not in self.options:
            raise ValueError(
                f"정답('{self.correct_option}')이 보기 목록({sorted(self.options)})에 없습니다."
            )
        return self


class ExamMetadata(BaseModel):
    title: Optional[str] = None
    subject: Optional[str] = None
    class_name: Optional[str] = Field(None, alias="class")
    term: Optional[str] = None
    academic_year: Optional[str] = Field(None, alias="academicYear")
    created_at: Optional[str] = Field(None, alias="createdAt")
    created_by: Optional[str] = Field(None, alias="createdBy")
    instructions: Optional[str] = None

    model_config = {"populate_by_name": True, "frozen": True}


class ExamSettings(BaseModel):
    """
    시험 운영 설정.

    duration_minutes가 없거나 0 이하인 경우는 여기서 거부하지 않는다.
    세션 시작 시 기본 시간(30분)으로 대체된다.
    """

    duration_minutes: Optional[int] = Field(None, alias="duration")
    total_marks: Optional[int] = Field(None, alias="totalMarks")
    pass_mark: Optional[float] = Field(None, alias="passMark")
    violation_threshold: int = Field(3, alias="violationThreshold", ge=1)
    auto_submit_on_violation: bool = Field(False, alias="autoSubmitOnViolation")
    strict_mode: bool = Field(False, alias="strictMode")
    enable_warnings: bool = Field(True, alias="enableWarnings")
    shuffle_questions: bool = Field(False, alias="shuffleQuestions")
    shuffle_options: bool = Field(False, alias="shuffleOptions")
    show_results: bool = Field(False, alias="showResults")
    allow_review: bool = Field(False, alias="allowReview")
    webhook_url: Optional[str] = Field(None, alias="webhookUrl")

    model_config = {"populate_by_name": True, "frozen": True}


class ExamDefinition(BaseModel):
    """시험지 전체. 문제 순서는 questions 리스트 순서를 따른다."""

    exam_id: str = Field(..., alias="examId", min_length=1)
    version: str = "1.0.0"
    metadata: ExamMetadata = Field(default_factory=ExamMetadata)
    settings: ExamSettings = Field(default_factory=ExamSettings)
    questions: List[Question] = Field(..., min_length=1)

    model_config = {"populate_by_name": True, "frozen": True}

    @model_validator(mode="after")
    def validate_unique_question_ids(self) -> "ExamDefinition":
        seen = set()
        for q in self.questions:
            if q.id in seen:
                raise ValueError(f"문제 ID가 중복되었습니다: {q.id}")
            seen.add(q.id)
        return self

    def question_ids(self) -> List[str]:
        return [q.id for q in self.questions]
