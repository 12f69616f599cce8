"""
services/integrity_monitor.py

시험 무결성(감독) 상태 머신.

상태: inactive → active → submitting (종료 상태)
active 상태에는 별도로 reentering 플래그가 있다. 전체화면 이탈 후 모니터가
스스로 전체화면 재진입을 시도하는 동안 켜지며, 그 사이 발생하는
fullscreen-exit 신호는 기록하지 않는다.

위반 기록 조건:
  - 상태가 active
  - fullscreen-exit 이면 reentering 이 아님
  - 마지막 기록 후 1초(디바운스) 이상 경과 : blur + visibilitychange 동시 발생 병합

모든 비동기 작업(재진입 지연, 전체화면 요청)은 실행 중인 asyncio 이벤트 루프에
예약되며, destroy() 시 취소된다.
"""

import asyncio
import logging
import time
from enum import Enum
from typing import Any, Callable, List, Optional, Set

from pydantic import BaseModel, Field

from config import (
    DEFAULT_VIOLATION_THRESHOLD,
    FULLSCREEN_REENTRY_DELAY,
    VIOLATION_DEBOUNCE_SECONDS,
)
from school_cbt.models.result_model import IntegritySnapshot, ViolationRecord, ViolationType
from school_cbt.services.platform import (
    EnvironmentSignals,
    FullscreenCapability,
    SignalType,
    utc_now_iso,
)

logger = logging.getLogger(__name__)

ViolationCallback = Callable[[ViolationRecord, int, int], None]
AutoSubmitCallback = Callable[[], None]
Notifier = Callable[[str], None]


class MonitorState(str, Enum):
    INACTIVE = "inactive"
    ACTIVE = "active"
    SUBMITTING = "submitting"


class MonitorConfig(BaseModel):
    container: Any = None
    auto_submit_on_violation: bool = False
    violation_threshold: int = Field(DEFAULT_VIOLATION_THRESHOLD, ge=1)
    enable_warnings: bool = True
    strict_mode: bool = False

    model_config = {"arbitrary_types_allowed": True}


_WARNING_TEXT = {
    ViolationType.FULLSCREEN_EXIT: "시험 중에는 전체화면을 유지해야 합니다.",
    ViolationType.TAB_SWITCH: "시험 중에는 다른 탭으로 전환할 수 없습니다.",
    ViolationType.WINDOW_BLUR: "시험 창에서 포커스를 벗어나면 안 됩니다.",
}

_TERMINATION_TEXT = {
    ViolationType.FULLSCREEN_EXIT: "전체화면을 너무 많이 벗어났습니다.",
    ViolationType.TAB_SWITCH: "탭 전환 횟수가 허용 한도를 넘었습니다.",
    ViolationType.WINDOW_BLUR: "시험 창 포커스를 너무 많이 잃었습니다.",
}


def build_warning_message(violation_type: ViolationType, count: int, threshold: int) -> str:
    if count >= threshold:
        return (
            "⚠️ 시험 종료\n\n"
            f"{_TERMINATION_TEXT[violation_type]}\n"
            "답안이 자동으로 제출됩니다."
        )
    return (
        f"⚠️ 경고 #{count}\n\n"
        f"{_WARNING_TEXT[violation_type]}\n\n"
        f"자동 제출까지 남은 허용 횟수: {threshold - count}"
    )


def _log_notice(message: str) -> None:
    logger.warning(message.replace("\n", " "))


class ViolationMonitor:
    """
    환경 신호를 받아 위반을 기록하고, 한도 도달 시 자동 제출을 알리는 모니터.

    모듈 전역 상태 없이 인스턴스마다 독립적이다.

    Args:
        signals:          환경 신호 허브.
        fullscreen:       전체화면 기능. None이면 재진입/전체화면 요청은 생략된다.
        notifier:         경고 메시지 표시 함수. 기본값은 로그 출력.
        clock:            디바운스 계산용 단조 시계 (초).
        debounce_seconds: 위반 기록 최소 간격.
        reentry_delay:    전체화면 이탈 후 재진입 시도까지의 지연.
    """

    def __init__(
        self,
        signals: EnvironmentSignals,
        fullscreen: Optional[FullscreenCapability] = None,
        notifier: Optional[Notifier] = None,
        clock: Callable[[], float] = time.monotonic,
        debounce_seconds: float = VIOLATION_DEBOUNCE_SECONDS,
        reentry_delay: float = FULLSCREEN_REENTRY_DELAY,
    ) -> None:
        self._signals = signals
        self._fullscreen = fullscreen
        self._notifier = notifier if notifier is not None else _log_notice
        self._clock = clock
        self._debounce_seconds = debounce_seconds
        self._reentry_delay = reentry_delay

        self.config = MonitorConfig()
        self.state = MonitorState.INACTIVE
        self.reentering = False

        self._ledger: List[ViolationRecord] = []
        self._last_violation_at: Optional[float] = None
        self._violation_callbacks: List[ViolationCallback] = []
        self._auto_submit_callbacks: List[AutoSubmitCallback] = []
        self._unsubscribers: List[Callable[[], None]] = []
        self._reentry_handle: Optional[asyncio.TimerHandle] = None
        self._reentry_task: Optional[asyncio.Task] = None
        self._fullscreen_requests: Set[asyncio.Task] = set()

    # ── 상태 조회 ─────────────────────────────────────────────────────────

    @property
    def count(self) -> int:
        return len(self._ledger)

    @property
    def is_active(self) -> bool:
        return self.state is MonitorState.ACTIVE

    @property
    def is_submitting(self) -> bool:
        return self.state is MonitorState.SUBMITTING

    def get_violations(self) -> IntegritySnapshot:
        """위반 횟수와 기록의 사본."""
        return IntegritySnapshot(violations=len(self._ledger), violation_log=list(self._ledger))

    # ── 생명주기 ──────────────────────────────────────────────────────────

    def init(self, config: Optional[MonitorConfig] = None, **overrides: Any) -> None:
        """
        모니터를 초기화하고 active 상태로 전환한다.

        이전 실행의 리스너, 콜백, 예약 작업은 모두 정리된다.
        콜백은 init() 이후에 등록해야 한다.
        """
        self.destroy()

        config = config or MonitorConfig()
        if overrides:
            config = config.model_copy(update=overrides)
        self.config = config

        self._ledger = []
        self._last_violation_at = None
        self.reentering = False
        self.state = MonitorState.ACTIVE

        self._unsubscribers = [
            self._signals.subscribe(SignalType.VISIBILITY_CHANGE, self._on_visibility_change),
            self._signals.subscribe(SignalType.BLUR, self._on_blur),
            self._signals.subscribe(SignalType.FULLSCREEN_CHANGE, self._on_fullscreen_change),
        ]
        logger.info(
            f"무결성 모니터 시작 (한도 {config.violation_threshold}회, "
            f"자동 제출 {'사용' if config.auto_submit_on_violation else '미사용'})"
        )

    def destroy(self) -> None:
        """리스너 해제, 콜백 초기화, 예약 작업 취소. 여러 번 호출해도 안전하다."""
        if self.state is not MonitorState.INACTIVE:
            logger.info(f"무결성 모니터 해제 (기록된 위반 {len(self._ledger)}회)")
        self.state = MonitorState.INACTIVE

        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []

        self._cancel_reentry()
        for task in list(self._fullscreen_requests):
            task.cancel()
        self._fullscreen_requests.clear()

        self._violation_callbacks = []
        self._auto_submit_callbacks = []

    # ── 콜백 등록 ─────────────────────────────────────────────────────────

    def on_violation(self, callback: ViolationCallback) -> Callable[[], None]:
        """위반 기록 시 (entry, count, threshold)로 호출될 콜백 등록. 해제 함수 반환."""
        return self._register(self._violation_callbacks, callback)

    def on_auto_submit(self, callback: AutoSubmitCallback) -> Callable[[], None]:
        """한도 도달 시 한 번 호출될 콜백 등록. 해제 함수 반환."""
        return self._register(self._auto_submit_callbacks, callback)

    @staticmethod
    def _register(registry: List, callback: Callable) -> Callable[[], None]:
        if not callable(callback):
            raise TypeError("callback은 호출 가능한 객체여야 합니다.")
        registry.append(callback)

        def _deregister() -> None:
            if callback in registry:
                registry.remove(callback)

        return _deregister

    # ── 공개 조작 ─────────────────────────────────────────────────────────

    def set_strict_mode(self, strict: bool) -> None:
        self.config = self.config.model_copy(update={"strict_mode": bool(strict)})

    def trigger_violation(self, violation_type: ViolationType) -> Optional[ViolationRecord]:
        """위반을 수동으로 발생시킨다. 일반 신호와 같은 기록 조건을 거친다."""
        return self._record(ViolationType(violation_type))

    def request_fullscreen(self) -> Optional[asyncio.Task]:
        """
        로그인 직후(사용자 동작 시점) 전체화면 진입 요청.
        기능이 없거나 이벤트 루프 밖이면 아무 것도 하지 않는다.
        """
        if self._fullscreen is None:
            logger.debug("전체화면 기능 없음 — 요청 생략")
            return None
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("실행 중인 이벤트 루프 없음 — 전체화면 요청 생략")
            return None

        task = loop.create_task(self._request_fullscreen_once())
        self._fullscreen_requests.add(task)
        task.add_done_callback(self._fullscreen_requests.discard)
        return task

    async def _request_fullscreen_once(self) -> None:
        try:
            await self._fullscreen.request_fullscreen(self.config.container)
        except Exception as e:
            logger.error(f"전체화면 진입 실패: {e}")

    # ── 신호 처리 ─────────────────────────────────────────────────────────

    def _on_visibility_change(self, hidden: bool = False, **_: Any) -> None:
        if hidden:
            self._record(ViolationType.TAB_SWITCH)

    def _on_blur(self, document_hidden: bool = False, **_: Any) -> None:
        # 문서가 숨겨진 상태의 blur는 탭 전환으로 이미 처리된다
        if not document_hidden:
            self._record(ViolationType.WINDOW_BLUR)

    def _on_fullscreen_change(self, in_fullscreen: bool = False, **_: Any) -> None:
        if not in_fullscreen:
            self._record(ViolationType.FULLSCREEN_EXIT)

    def _record(self, violation_type: ViolationType) -> Optional[ViolationRecord]:
        if self.state is not MonitorState.ACTIVE:
            logger.debug(f"위반 무시 ({violation_type.value}): 모니터 상태 {self.state.value}")
            return None
        if violation_type is ViolationType.FULLSCREEN_EXIT and self.reentering:
            logger.debug("전체화면 재진입 중 — fullscreen-exit 무시")
            return None

        now = self._clock()
        if (
            self._last_violation_at is not None
            and now - self._last_violation_at < self._debounce_seconds
        ):
            logger.debug(f"위반 디바운스 ({violation_type.value})")
            return None
        self._last_violation_at = now

        entry = ViolationRecord(type=violation_type, timestamp=utc_now_iso())
        self._ledger.append(entry)
        count = len(self._ledger)
        threshold = self.config.violation_threshold
        logger.warning(f"무결성 위반: {violation_type.value} ({count}/{threshold})")

        for callback in list(self._violation_callbacks):
            try:
                callback(entry, count, threshold)
            except Exception:
                logger.exception("위반 콜백 실행 중 오류")

        if self.config.enable_warnings:
            try:
                self._notifier(build_warning_message(violation_type, count, threshold))
            except Exception:
                logger.exception("경고 표시 중 오류")

        exceeded = count >= threshold
        if violation_type is ViolationType.FULLSCREEN_EXIT and not exceeded:
            self._enforce_fullscreen()
        if exceeded and self.config.auto_submit_on_violation:
            self._trigger_auto_submit()
        return entry

    # ── 자동 제출 ─────────────────────────────────────────────────────────

    def _trigger_auto_submit(self) -> None:
        if self.state is not MonitorState.ACTIVE:
            return
        logger.warning("위반 한도 도달 — 자동 제출 실행")
        self.state = MonitorState.SUBMITTING
        self._cancel_reentry()

        for callback in list(self._auto_submit_callbacks):
            try:
                callback()
            except Exception:
                logger.exception("자동 제출 콜백 실행 중 오류")

    # ── 전체화면 재진입 ───────────────────────────────────────────────────

    def _enforce_fullscreen(self) -> None:
        if self.reentering or self.state is not MonitorState.ACTIVE:
            return
        if self._fullscreen is None:
            logger.debug("전체화면 기능 없음 — 재진입 생략")
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("실행 중인 이벤트 루프 없음 — 재진입 생략")
            return

        self.reentering = True
        self._reentry_handle = loop.call_later(self._reentry_delay, self._begin_reentry)

    def _begin_reentry(self) -> None:
        self._reentry_handle = None
        if self.state is not MonitorState.ACTIVE:
            self.reentering = False
            return
        logger.info("위반 후 전체화면 재진입 요청")
        self._reentry_task = asyncio.ensure_future(self._reenter())

    async def _reenter(self) -> None:
        try:
            await self._fullscreen.request_fullscreen(self.config.container)
            logger.info("전체화면 재진입 성공")
        except Exception as e:
            logger.error(f"전체화면 재진입 실패: {e}")
        finally:
            if self._reentry_task is asyncio.current_task():
                self._reentry_task = None
                self.reentering = False

    def _cancel_reentry(self) -> None:
        if self._reentry_handle is not None:
            self._reentry_handle.cancel()
            self._reentry_handle = None
        if self._reentry_task is not None:
            self._reentry_task.cancel()
            self._reentry_task = None
        self.reentering = False
