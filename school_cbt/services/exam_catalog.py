"""
services/exam_catalog.py

시험 목록(manifest.json)과 시험지 JSON 파일을 서버 쪽에서 읽어 온다.

exams/
  manifest.json     [{"filename": "math-jss1.json", "title": "..."}]
  math-jss1.json    ExamDefinition

브라우저는 파일 이름만 고른다. 정답과 감독 설정은 서버에서만 읽힌다.
manifest에 없는 파일은 열지 않는다.
"""

import json
import logging
import os
from typing import List

from pydantic import BaseModel, Field, ValidationError

from config import MANIFEST_FILE
from school_cbt.models.question_model import ExamDefinition

logger = logging.getLogger(__name__)


class ExamCatalogError(Exception):
    """시험 목록 또는 시험지를 읽지 못함."""


class ExamNotFoundError(ExamCatalogError):
    """manifest에 없는 시험 파일."""


class CatalogEntry(BaseModel):
    filename: str = Field(..., min_length=1)
    title: str = ""


class ExamCatalog:
    def __init__(self, exams_dir: str, manifest_file: str = MANIFEST_FILE) -> None:
        self.exams_dir = exams_dir
        self.manifest_file = manifest_file

    def list_exams(self) -> List[CatalogEntry]:
        path = os.path.join(self.exams_dir, self.manifest_file)
        try:
            with open(path, "r", encoding="utf-8") as f:
                raw = json.load(f)
            if not isinstance(raw, list):
                raise ValueError("manifest는 배열이어야 합니다.")
            return [CatalogEntry.model_validate(item) for item in raw]
        except (OSError, ValueError) as e:
            logger.error(f"시험 목록 로드 실패 ({path}): {e}")
            raise ExamCatalogError("시험 목록을 불러오지 못했습니다.") from e

    def load_exam(self, filename: str) -> ExamDefinition:
        """manifest에 등록된 시험지를 읽어 검증한다."""
        registered = {entry.filename for entry in self.list_exams()}
        if filename not in registered:
            raise ExamNotFoundError(f"등록되지 않은 시험입니다: {filename}")

        root = os.path.realpath(self.exams_dir)
        path = os.path.realpath(os.path.join(root, filename))
        if os.path.dirname(path) != root:
            raise ExamNotFoundError(f"등록되지 않은 시험입니다: {filename}")

        try:
            with open(path, "r", encoding="utf-8") as f:
                exam = ExamDefinition.model_validate(json.load(f))
        except ValidationError as e:
            logger.error(f"시험지 검증 실패 ({filename}): {e.error_count()}건")
            raise ExamCatalogError(f"시험지 형식이 올바르지 않습니다: {filename}") from e
        except (OSError, ValueError) as e:
            logger.error(f"시험지 로드 실패 ({filename}): {e}")
            raise ExamCatalogError(f"시험지를 불러오지 못했습니다: {filename}") from e

        logger.info(f"시험지 로드: {exam.exam_id} ({len(exam.questions)}문항)")
        return exam
