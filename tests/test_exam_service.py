import re
from datetime import datetime

import pytest
from pydantic import ValidationError

from school_cbt.models.question_model import ExamDefinition
from school_cbt.services.exam_service import (
    calculate_duration_used,
    calculate_percentage,
    compute,
    generate_submission_id,
    get_incorrect_questions,
    is_passed,
)
from conftest import make_exam, make_exam_dict


def test_scenario_one_correct_one_wrong(exam):
    summary, outcomes = compute(exam, {"Q001": "B", "Q002": "A"})

    assert summary.obtained_marks == 5
    assert summary.total_marks == 15
    assert summary.percentage == 33.33
    assert summary.passed is False
    assert summary.correct == 1
    assert summary.wrong == 1
    assert summary.unanswered == 0
    assert [o.marks_awarded for o in outcomes] == [5, 0]


def test_missing_and_null_answers_count_as_unanswered(exam):
    summary, outcomes = compute(exam, {"Q001": None})

    assert summary.unanswered == 2
    assert summary.attempted == 0
    assert summary.obtained_marks == 0
    assert all(o.selected_option is None and not o.is_correct for o in outcomes)


def test_answers_for_unknown_questions_are_ignored(exam):
    summary, _ = compute(exam, {"Q999": "A", "Q002": "C"})
    assert summary.total_questions == 2
    assert summary.obtained_marks == 10


@pytest.mark.parametrize("marks", [None, 0, -3])
def test_unset_or_non_positive_marks_default_to_one(marks):
    data = make_exam_dict()
    data["questions"][0]["marks"] = marks
    exam = ExamDefinition.model_validate(data)

    summary, outcomes = compute(exam, {"Q001": "B"})
    assert summary.total_marks == 11
    assert outcomes[0].marks_awarded == 1


def test_compute_is_deterministic(exam):
    answers = {"Q001": "B", "Q002": "D"}
    first, first_outcomes = compute(exam, answers)
    second, second_outcomes = compute(exam, answers)

    assert first == second
    assert first_outcomes == second_outcomes
    assert sum(o.marks_awarded for o in first_outcomes) <= first.total_marks


def test_pass_mark_defaults_to_fifty():
    data = make_exam_dict()
    del data["settings"]["passMark"]
    data["questions"][0]["marks"] = 10
    exam = ExamDefinition.model_validate(data)

    summary, _ = compute(exam, {"Q001": "B"})
    assert summary.percentage == 50.0
    assert summary.passed is True


def test_percentage_rounds_half_up():
    assert calculate_percentage(1, 32) == 3.13
    assert calculate_percentage(2, 3) == 66.67
    assert calculate_percentage(0, 0) == 0.0


def test_is_passed_boundary():
    assert is_passed(50.0) is True
    assert is_passed(49.99) is False
    assert is_passed(70.0, pass_mark=75) is False


def test_zero_pass_mark_falls_back_to_default():
    assert is_passed(0.0, pass_mark=0) is False
    assert is_passed(50.0, pass_mark=0) is True

    summary, _ = compute(make_exam(passMark=0), {})
    assert summary.percentage == 0.0
    assert summary.passed is False


def test_duration_used_rounds_up_to_minutes():
    assert calculate_duration_used(30, 30 * 60) == 0
    assert calculate_duration_used(30, 30 * 60 - 1) == 1
    assert calculate_duration_used(30, 0) == 30


def test_submission_id_format():
    sid = generate_submission_id(datetime(2026, 10, 19, 9, 30))
    assert re.fullmatch(r"SUB-20261019-[A-Z0-9]{6}", sid)


def test_incorrect_questions_include_unanswered(exam):
    incorrect = get_incorrect_questions(exam, {"Q001": "B"})
    assert [q.id for q in incorrect] == ["Q002"]


def test_duplicate_question_ids_rejected():
    data = make_exam_dict()
    data["questions"][1]["questionId"] = "Q001"
    with pytest.raises(ValidationError):
        ExamDefinition.model_validate(data)


def test_correct_answer_must_be_an_option():
    data = make_exam_dict()
    data["questions"][0]["options"] = {"A": "4", "C": "6"}
    with pytest.raises(ValidationError):
        ExamDefinition.model_validate(data)


def test_exam_settings_read_from_camel_case_fields():
    exam = make_exam(violationThreshold=5)
    assert exam.settings.violation_threshold == 5
    assert exam.metadata.class_name == "JSS1"
    assert exam.questions[1].correct_option == "C"
