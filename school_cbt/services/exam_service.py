"""
services/exam_service.py

시험 채점 및 결과 분석 비즈니스 로직.
순수 Python 함수로 구성 — 입출력, 전역 상태 변경 없음.
같은 입력이면 언제 다시 실행해도 같은 결과가 나오므로 사후 감사용 재채점에도 쓴다.
"""

import math
import random
import string
from datetime import datetime
from typing import Dict, List, Mapping, Optional, Tuple

from config import DEFAULT_PASS_MARK
from school_cbt.models.question_model import ExamDefinition, Question
from school_cbt.models.result_model import AnswerOutcome, ScoringSummary

_SUBMISSION_ID_CHARS = string.ascii_uppercase + string.digits


def question_marks(question: Question) -> int:
    """배점이 비어 있거나 0 이하이면 1점."""
    if not question.marks or question.marks <= 0:
        return 1
    return question.marks


def calculate_percentage(obtained: int, total: int) -> float:
    """
    백분율을 소수점 둘째 자리까지 계산한다.

    반올림은 사사오입(half-up)이다. 파이썬 round()의 은행가 반올림을 쓰면
    브라우저 쪽 결과와 어긋나는 경우가 생긴다.
    """
    if total <= 0:
        return 0.0
    return math.floor(obtained / total * 10000 + 0.5) / 100


def is_passed(percentage: float, pass_mark: Optional[float] = None) -> bool:
    """
    합격 여부를 반환한다.

    Args:
        percentage: calculate_percentage()가 반환한 백분율.
        pass_mark:  합격 기준 (미지정이거나 0이면 50).
    """
    if not pass_mark:
        pass_mark = DEFAULT_PASS_MARK
    return percentage >= pass_mark


def compute(
    exam: ExamDefinition,
    answers: Mapping[str, Optional[str]],
) -> Tuple[ScoringSummary, List[AnswerOutcome]]:
    """
    답안을 채점하여 (요약, 문항별 결과)를 반환한다.

    정답 판정 기준: answers.get(question.id) == question.correct_option
    응답하지 않은 문제(키 없음 또는 None)는 미응답으로 집계하며 오류가 아니다.
    시험지에 없는 문제 ID의 답안은 무시한다.

    Args:
        exam:    채점 대상 시험지.
        answers: 답안지. {question.id: 선택한 보기 문자}

    Returns:
        (ScoringSummary, 문제 순서대로의 AnswerOutcome 리스트)
    """
    outcomes: List[AnswerOutcome] = []
    total_marks = obtained = correct = wrong = unanswered = 0

    for q in exam.questions:
        marks = question_marks(q)
        total_marks += marks

        selected = answers.get(q.id)
        is_correct = selected is not None and selected == q.correct_option
        awarded = marks if is_correct else 0

        if selected is None:
            unanswered += 1
        elif is_correct:
            correct += 1
            obtained += awarded
        else:
            wrong += 1

        outcomes.append(
            AnswerOutcome(
                question_id=q.id,
                selected_option=selected,
                is_correct=is_correct,
                marks_awarded=awarded,
            )
        )

    percentage = calculate_percentage(obtained, total_marks)
    summary = ScoringSummary(
        total_questions=len(exam.questions),
        attempted=len(exam.questions) - unanswered,
        correct=correct,
        wrong=wrong,
        unanswered=unanswered,
        total_marks=total_marks,
        obtained_marks=obtained,
        percentage=percentage,
        passed=is_passed(percentage, exam.settings.pass_mark),
    )
    return summary, outcomes


def get_incorrect_questions(
    exam: ExamDefinition,
    answers: Mapping[str, Optional[str]],
) -> List[Question]:
    """
    오답 문제 리스트를 반환한다 (오답 노트용).

    사용자가 선택한 답이 정답과 다르거나 아예 응답하지 않은 문제를 포함한다.
    원본 순서 유지.
    """
    return [q for q in exam.questions if answers.get(q.id) != q.correct_option]


def calculate_duration_used(duration_allowed: int, time_left: int) -> int:
    """사용 시간(분, 올림). duration_allowed는 분, time_left는 초 단위."""
    used_seconds = max(0, duration_allowed * 60 - time_left)
    return math.ceil(used_seconds / 60)


def generate_submission_id(now: Optional[datetime] = None) -> str:
    """제출 ID 생성. 형식: SUB-YYYYMMDD-XXXXXX"""
    now = now or datetime.now()
    suffix = "".join(random.choice(_SUBMISSION_ID_CHARS) for _ in range(6))
    return f"SUB-{now:%Y%m%d}-{suffix}"


def answer_summary(exam: ExamDefinition, answers: Dict[str, Optional[str]]) -> Dict[str, int]:
    """진행 화면용 응답/미응답 개수."""
    answered = sum(1 for q in exam.questions if answers.get(q.id) is not None)
    return {"answered": answered, "unanswered": len(exam.questions) - answered}
