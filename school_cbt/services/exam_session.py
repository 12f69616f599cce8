"""
services/exam_session.py

시험 세션 컨트롤러.

세션 상태(타이머, 답안, 현재 문제)를 소유하고, 스냅샷 저장/복구를 담당하며,
무결성 모니터 인스턴스를 하나 가진다. 제출 시 채점 → 결과 문서 생성 →
제출 파이프라인 전달까지 한 번만 수행한다.

타이머와 결과 전송은 asyncio 태스크로 동작한다. 모든 처리가 하나의 이벤트 루프
위에서 협력적으로 실행되므로 "submitted 확인 후 변경" 패턴에 경쟁 조건이 없다.
"""

import asyncio
import json
import logging
import time
from datetime import datetime
from typing import Callable, Optional

from pydantic import ValidationError

from config import (
    DEFAULT_DURATION_MINUTES,
    RESULT_VERSION,
    SNAPSHOT_INTERVAL_SECONDS,
    STORAGE_KEY,
    TICK_INTERVAL_SECONDS,
)
from school_cbt.models.question_model import OPTION_KEYS, ExamDefinition
from school_cbt.models.result_model import (
    ExamReference,
    IntegritySnapshot,
    ResultDocument,
    ResultTiming,
    StudentSnapshot,
    SubmissionInfo,
    SubmissionOutcome,
    SubmissionType,
)
from school_cbt.models.session_state import SessionState, SessionTiming, StudentInfo
from school_cbt.services.exam_service import (
    calculate_duration_used,
    compute,
    generate_submission_id,
)
from school_cbt.services.integrity_monitor import MonitorConfig, Notifier, ViolationMonitor
from school_cbt.services.platform import EnvironmentSignals, FullscreenCapability, utc_now_iso
from school_cbt.services.storage import KeyValueStore
from school_cbt.services.submission import SubmissionPipeline

logger = logging.getLogger(__name__)


class ExamSession:
    """
    한 응시자의 시험 세션.

    Args:
        store:             스냅샷 저장소.
        pipeline:          결과 제출 파이프라인.
        signals:           환경 신호 허브. 없으면 전용 허브를 만든다.
        fullscreen:        전체화면 기능 (선택).
        notifier:          경고 메시지 표시 함수 (선택).
        clock:             모니터 디바운스용 단조 시계.
        snapshot_key:      스냅샷 저장 키. 사용자별로 구분할 때 바꾼다.
        tick_interval:     타이머 간격 (초).
        snapshot_interval: 카운트다운 몇 초마다 스냅샷을 저장할지.
    """

    def __init__(
        self,
        store: KeyValueStore,
        pipeline: SubmissionPipeline,
        signals: Optional[EnvironmentSignals] = None,
        fullscreen: Optional[FullscreenCapability] = None,
        notifier: Optional[Notifier] = None,
        clock: Callable[[], float] = time.monotonic,
        snapshot_key: str = STORAGE_KEY,
        tick_interval: float = TICK_INTERVAL_SECONDS,
        snapshot_interval: int = SNAPSHOT_INTERVAL_SECONDS,
    ) -> None:
        self._store = store
        self._pipeline = pipeline
        self._signals = signals or EnvironmentSignals()
        self._fullscreen = fullscreen
        self._notifier = notifier
        self._clock = clock
        self._snapshot_key = snapshot_key
        self._tick_interval = tick_interval
        self._snapshot_interval = max(1, snapshot_interval)

        self.state: Optional[SessionState] = None
        self.monitor: Optional[ViolationMonitor] = None
        self.result: Optional[ResultDocument] = None
        self.outcome: Optional[SubmissionOutcome] = None
        self.finalize_task: Optional[asyncio.Task] = None
        self._ticker: Optional[asyncio.Task] = None

    # ── 상태 조회 ─────────────────────────────────────────────────────────

    @property
    def submitted(self) -> bool:
        return self.state is not None and self.state.submitted

    @property
    def is_active(self) -> bool:
        return self.state is not None and not self.state.submitted

    @property
    def is_ticking(self) -> bool:
        return self._ticker is not None and not self._ticker.done()

    # ── 세션 시작/복구 ────────────────────────────────────────────────────

    def start_session(self, exam: ExamDefinition, student: StudentInfo) -> SessionState:
        """새 세션 시작. 남은 시간 = 허용 시간(분) × 60."""
        if self.is_active:
            raise RuntimeError("이미 진행 중인 시험 세션이 있습니다.")

        duration = exam.settings.duration_minutes
        if not duration or duration <= 0:
            logger.warning(
                f"[{exam.exam_id}] 시험 시간이 지정되지 않았습니다. 기본값 {DEFAULT_DURATION_MINUTES}분을 사용합니다."
            )
            duration = DEFAULT_DURATION_MINUTES

        student = student.model_copy(update={"subject": exam.metadata.subject or student.subject})
        self.state = SessionState(
            student=student,
            exam=exam,
            time_left=duration * 60,
            timing=SessionTiming(started_at=utc_now_iso(), duration_allowed=duration),
        )
        self._reset_submission()
        self._configure_pipeline(exam)
        self._start_monitor()
        self.persist_snapshot()
        logger.info(f"[{exam.exam_id}] 시험 시작: {student.name} ({duration}분, {len(exam.questions)}문항)")
        return self.state

    def load_snapshot(self) -> Optional[SessionState]:
        """
        저장된 스냅샷을 확인만 한다 (이어하기 안내용).
        손상된 스냅샷은 삭제하고 None을 반환한다.
        """
        raw = self._store.get(self._snapshot_key)
        if raw is None:
            return None
        state = self.parse_snapshot(raw)
        if state is None:
            self.discard_snapshot()
        return state

    def restore_snapshot(self, raw: Optional[str] = None) -> Optional[SessionState]:
        """
        스냅샷으로 세션을 복구한다. raw가 없으면 저장소에서 읽는다.

        exam.examId가 없거나 응시자 이름이 비어 있는 등 손상된 스냅샷은 삭제하고
        None을 반환한다. 이 경우 호출자는 새 세션을 시작해야 한다.
        """
        if self.is_active:
            raise RuntimeError("이미 진행 중인 시험 세션이 있습니다.")
        if raw is None:
            raw = self._store.get(self._snapshot_key)
            if raw is None:
                return None

        state = self.parse_snapshot(raw)
        if state is None:
            self.discard_snapshot()
            return None

        last_index = len(state.exam.questions) - 1
        state.current_question_index = min(state.current_question_index, last_index)
        self.state = state
        self._reset_submission()
        self._configure_pipeline(state.exam)
        self._start_monitor()
        self.persist_snapshot()
        logger.info(
            f"[{state.exam.exam_id}] 시험 이어하기: {state.student.name} (남은 시간 {state.time_left}초)"
        )
        return state

    @staticmethod
    def parse_snapshot(raw: str) -> Optional[SessionState]:
        try:
            data = json.loads(raw)
        except (TypeError, ValueError) as e:
            logger.warning(f"스냅샷 JSON 파싱 실패: {e}")
            return None

        if not isinstance(data, dict):
            logger.warning("스냅샷 형식이 올바르지 않습니다.")
            return None
        exam = data.get("exam")
        if not isinstance(exam, dict) or not exam.get("examId"):
            logger.warning("스냅샷에 시험 ID가 없습니다. 손상된 세션으로 처리합니다.")
            return None
        student = data.get("student")
        name = student.get("name") if isinstance(student, dict) else None
        if not isinstance(name, str) or not name.strip():
            logger.warning("스냅샷에 응시자 이름이 없습니다. 손상된 세션으로 처리합니다.")
            return None

        try:
            return SessionState.model_validate(data)
        except ValidationError as e:
            logger.warning(f"스냅샷 검증 실패: {e.error_count()}개 오류")
            return None

    def discard_snapshot(self) -> None:
        self._store.delete(self._snapshot_key)
        logger.info("저장된 세션 스냅샷 삭제")

    def persist_snapshot(self) -> None:
        if not self.is_active:
            return
        try:
            self._store.set(self._snapshot_key, self.state.to_snapshot_json())
        except OSError as e:
            logger.error(f"스냅샷 저장 실패: {e}")

    # ── 타이머 ────────────────────────────────────────────────────────────

    def start_ticking(self) -> asyncio.Task:
        """실행 중인 이벤트 루프에 타이머 태스크를 등록한다."""
        self.stop_ticking()
        self._ticker = asyncio.get_running_loop().create_task(self._run_clock())
        return self._ticker

    def stop_ticking(self) -> None:
        ticker, self._ticker = self._ticker, None
        if ticker is not None and not ticker.done():
            ticker.cancel()

    async def _run_clock(self) -> None:
        while self.is_active:
            await asyncio.sleep(self._tick_interval)
            self.tick()

    def tick(self) -> None:
        """1초 경과 처리. 5초마다 스냅샷 저장, 0초가 되면 자동 제출."""
        if not self.is_active:
            return
        state = self.state
        state.time_left = max(0, state.time_left - 1)

        if state.time_left % self._snapshot_interval == 0:
            self.persist_snapshot()

        if state.time_left <= 0:
            logger.info(f"[{state.exam.exam_id}] 시험 시간 종료 — 자동 제출")
            self.stop_ticking()
            self.submit(forced=True, reason=SubmissionType.AUTO_TIMEOUT)

    # ── 응시 조작 ─────────────────────────────────────────────────────────

    def record_answer(self, question_id: str, option: Optional[str]) -> None:
        """답안 기록. 제출 후에는 무시된다. option이 None이면 답안을 지운다."""
        if not self.is_active:
            return
        if question_id not in self.state.exam.question_ids():
            raise ValueError(f"존재하지 않는 문제입니다: {question_id}")

        if option is None:
            self.state.answers.pop(question_id, None)
        else:
            if option not in OPTION_KEYS:
                raise ValueError(f"보기는 A~D 중 하나여야 합니다: {option}")
            self.state.answers[question_id] = option
        self.persist_snapshot()

    def navigate(self, index: int) -> int:
        """문제 이동. 범위를 벗어나면 처음/마지막 문제로 보정한다."""
        if self.state is None:
            raise RuntimeError("시험 세션이 없습니다.")
        last_index = len(self.state.exam.questions) - 1
        self.state.current_question_index = max(0, min(index, last_index))
        self.persist_snapshot()
        return self.state.current_question_index

    # ── 제출 ──────────────────────────────────────────────────────────────

    def submit(
        self,
        forced: bool = False,
        reason: SubmissionType = SubmissionType.MANUAL,
    ) -> Optional[ResultDocument]:
        """
        시험 제출. 이미 제출되었으면 아무 것도 하지 않고 None을 반환한다.

        시간 종료와 위반 자동 제출이 겹쳐도 먼저 호출된 쪽만 처리된다.
        결과 전송(finalize)은 이벤트 루프 태스크로 예약되며,
        루프 밖에서 호출된 경우에는 그 자리에서 끝까지 실행한다.
        """
        if self.state is None or self.state.submitted:
            logger.info("이미 제출된 세션 — 중복 제출 무시")
            return None

        state = self.state
        state.submitted = True
        self.stop_ticking()
        try:
            self._store.delete(self._snapshot_key)
        except OSError as e:
            logger.error(f"제출 후 스냅샷 삭제 실패: {e}")
        state.timing.submitted_at = utc_now_iso()

        submission_type = SubmissionType(reason)
        if forced and submission_type is SubmissionType.MANUAL:
            submission_type = SubmissionType.AUTO_TIMEOUT

        integrity = IntegritySnapshot()
        if self.monitor is not None:
            integrity = self.monitor.get_violations()
            self.monitor.destroy()

        result = self._build_result(state, submission_type, integrity)
        self.result = result
        logger.info(
            f"[{result.submission_id}] 시험 제출 ({submission_type.value}): "
            f"{result.scoring.obtained_marks}/{result.scoring.total_marks} "
            f"({result.scoring.percentage}%), 위반 {integrity.violations}회"
        )
        self._schedule_finalize(result)
        return result

    def _build_result(
        self,
        state: SessionState,
        submission_type: SubmissionType,
        integrity: IntegritySnapshot,
    ) -> ResultDocument:
        exam = state.exam
        summary, outcomes = compute(exam, state.answers)
        return ResultDocument(
            submission_id=generate_submission_id(datetime.now()),
            version=RESULT_VERSION,
            student=StudentSnapshot(
                full_name=state.student.name,
                registration_number=state.student.seat_number,
                class_name=state.student.class_name,
            ),
            exam=ExamReference(
                exam_id=exam.exam_id,
                title=exam.metadata.title,
                subject=exam.metadata.subject,
                term=exam.metadata.term,
                academic_year=exam.metadata.academic_year,
            ),
            answers=outcomes,
            scoring=summary,
            timing=ResultTiming(
                started_at=state.timing.started_at,
                submitted_at=state.timing.submitted_at,
                duration_allowed=state.timing.duration_allowed,
                duration_used=calculate_duration_used(state.timing.duration_allowed, state.time_left),
            ),
            submission=SubmissionInfo(type=submission_type, client_timestamp=utc_now_iso()),
            integrity=integrity,
        )

    def _schedule_finalize(self, result: ResultDocument) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self.outcome = asyncio.run(self._pipeline.finalize(result))
            return
        self.finalize_task = loop.create_task(self._pipeline.finalize(result))
        self.finalize_task.add_done_callback(self._on_finalized)

    def _on_finalized(self, task: asyncio.Task) -> None:
        if task.cancelled():
            logger.warning("결과 전송 작업이 취소되었습니다.")
            return
        self.outcome = task.result()
        if not self.outcome.success:
            logger.warning(f"[{self.outcome.submission_id}] 결과 전송 실패: {self.outcome.error}")

    # ── 정리 ──────────────────────────────────────────────────────────────

    def close(self) -> None:
        """제출하지 않고 타이머와 모니터만 정리한다. 스냅샷은 이어하기용으로 남는다."""
        self.stop_ticking()
        if self.monitor is not None:
            self.monitor.destroy()

    # ── 내부 ──────────────────────────────────────────────────────────────

    def _reset_submission(self) -> None:
        self.result = None
        self.outcome = None
        self.finalize_task = None

    def _configure_pipeline(self, exam: ExamDefinition) -> None:
        if exam.settings.webhook_url:
            self._pipeline.configure(webhook_url=exam.settings.webhook_url)

    def _start_monitor(self) -> None:
        settings = self.state.exam.settings
        if self.monitor is not None:
            self.monitor.destroy()
        self.monitor = ViolationMonitor(
            self._signals,
            fullscreen=self._fullscreen,
            notifier=self._notifier,
            clock=self._clock,
        )
        self.monitor.init(
            MonitorConfig(
                auto_submit_on_violation=settings.auto_submit_on_violation,
                violation_threshold=settings.violation_threshold,
                enable_warnings=settings.enable_warnings,
                strict_mode=settings.strict_mode,
            )
        )
        self.monitor.on_auto_submit(self._on_violation_limit)

    def _on_violation_limit(self) -> None:
        self.submit(forced=True, reason=SubmissionType.AUTO_VIOLATION)
