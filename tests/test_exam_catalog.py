import json
import os

import pytest

from school_cbt.services.exam_catalog import ExamCatalog, ExamCatalogError, ExamNotFoundError
from conftest import make_exam_dict, write_exam

BUNDLED_EXAMS = os.path.join(os.path.dirname(os.path.dirname(__file__)), "exams")


@pytest.fixture()
def exams_dir(tmp_path):
    path = str(tmp_path / "exams")
    write_exam(path, make_exam_dict())
    return path


def test_list_exams_reads_manifest(exams_dir):
    entries = ExamCatalog(exams_dir).list_exams()
    assert [(e.filename, e.title) for e in entries] == [("math-jss1.json", "JSS1 Mathematics")]


def test_load_exam_validates_definition(exams_dir):
    exam = ExamCatalog(exams_dir).load_exam("math-jss1.json")
    assert exam.exam_id == "MATH-JSS1-T1"
    assert exam.settings.violation_threshold == 3


def test_unregistered_file_is_not_opened(exams_dir):
    with open(os.path.join(exams_dir, "hidden.json"), "w", encoding="utf-8") as f:
        json.dump(make_exam_dict(), f)

    catalog = ExamCatalog(exams_dir)
    with pytest.raises(ExamNotFoundError):
        catalog.load_exam("hidden.json")
    with pytest.raises(ExamNotFoundError):
        catalog.load_exam("../exams/math-jss1.json")


def test_manifest_entry_outside_exams_dir_is_rejected(tmp_path):
    exams_dir = str(tmp_path / "exams")
    write_exam(exams_dir, make_exam_dict(), filename="../outside.json")

    with pytest.raises(ExamNotFoundError):
        ExamCatalog(exams_dir).load_exam("../outside.json")


def test_invalid_exam_file_raises_catalog_error(tmp_path):
    exams_dir = str(tmp_path / "exams")
    broken = make_exam_dict()
    del broken["examId"]
    write_exam(exams_dir, broken)

    with pytest.raises(ExamCatalogError):
        ExamCatalog(exams_dir).load_exam("math-jss1.json")


def test_missing_manifest_raises_catalog_error(tmp_path):
    with pytest.raises(ExamCatalogError):
        ExamCatalog(str(tmp_path / "nowhere")).list_exams()


def test_manifest_must_be_a_list(tmp_path):
    (tmp_path / "manifest.json").write_text('{"filename": "x.json"}', encoding="utf-8")
    with pytest.raises(ExamCatalogError):
        ExamCatalog(str(tmp_path)).list_exams()


def test_bundled_sample_exam_loads():
    catalog = ExamCatalog(BUNDLED_EXAMS)
    for entry in catalog.list_exams():
        assert catalog.load_exam(entry.filename).questions
