"""
services/platform.py

호스트(브라우저) 쪽 기능을 코어에 노출하는 얇은 어댑터 모음.

  - EnvironmentSignals : visibilitychange / blur / fullscreenchange 신호 허브
  - FullscreenCapability / BrowserFullscreen : 전체화면 요청 기능
  - NoticeBoard : 경고창(blocking notice)을 브라우저에 전달하는 큐

코어(모니터, 세션)는 벤더 접두사나 DOM을 알지 못하고 이 인터페이스만 사용한다.
"""

import asyncio
import logging
from collections import defaultdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Protocol

from config import FULLSCREEN_REQUEST_TIMEOUT

logger = logging.getLogger(__name__)


def utc_now_iso() -> str:
    """ISO-8601 UTC 타임스탬프 (밀리초, 'Z' 접미사)."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class SignalType(str, Enum):
    VISIBILITY_CHANGE = "visibilitychange"
    BLUR = "blur"
    FULLSCREEN_CHANGE = "fullscreenchange"


SignalHandler = Callable[..., None]


class EnvironmentSignals:
    """
    환경 신호 구독/발행 허브.

    subscribe()는 해제 함수를 돌려준다. 같은 허브에 여러 모니터가 붙어도
    서로 간섭하지 않는다.
    """

    def __init__(self) -> None:
        self._handlers: Dict[SignalType, List[SignalHandler]] = defaultdict(list)

    def subscribe(self, signal: SignalType, handler: SignalHandler) -> Callable[[], None]:
        signal = SignalType(signal)
        self._handlers[signal].append(handler)

        def _unsubscribe() -> None:
            try:
                self._handlers[signal].remove(handler)
            except ValueError:
                pass

        return _unsubscribe

    def emit(self, signal: SignalType, **payload: Any) -> None:
        signal = SignalType(signal)
        logger.debug(f"환경 신호 수신: {signal.value} {payload}")
        for handler in list(self._handlers[signal]):
            try:
                handler(**payload)
            except Exception:
                logger.exception(f"환경 신호 처리 중 오류: {signal.value}")

    def handler_count(self, signal: Optional[SignalType] = None) -> int:
        if signal is not None:
            return len(self._handlers[SignalType(signal)])
        return sum(len(v) for v in self._handlers.values())


class FullscreenCapability(Protocol):
    async def request_fullscreen(self, element: Any = None) -> None:
        """전체화면 진입 시도. 실패하면 예외를 던진다."""
        ...


class FullscreenError(RuntimeError):
    pass


class BrowserFullscreen:
    """
    서버에서 브라우저로 전체화면 요청을 전달하는 기능.

    request_fullscreen()은 대기 중 요청을 만들어 두고, 브라우저가 폴링으로
    요청을 확인한 뒤 결과를 보고(resolve)할 때까지 기다린다.
    정해진 시간 안에 응답이 없으면 실패로 본다.
    """

    def __init__(self, timeout: float = FULLSCREEN_REQUEST_TIMEOUT) -> None:
        self.timeout = timeout
        self._pending: Optional[asyncio.Future] = None

    @property
    def requested(self) -> bool:
        return self._pending is not None and not self._pending.done()

    async def request_fullscreen(self, element: Any = None) -> None:
        if not self.requested:
            self._pending = asyncio.get_running_loop().create_future()
        pending = self._pending
        try:
            ok = await asyncio.wait_for(asyncio.shield(pending), self.timeout)
        except asyncio.TimeoutError:
            if not pending.done():
                pending.cancel()
            raise FullscreenError("브라우저가 전체화면 요청에 응답하지 않았습니다.")
        if not ok:
            raise FullscreenError("브라우저가 전체화면 전환을 거부했습니다.")

    def resolve(self, success: bool) -> bool:
        """브라우저의 전체화면 전환 결과 보고. 대기 중 요청이 없으면 False."""
        if not self.requested:
            return False
        self._pending.set_result(bool(success))
        return True


class NoticeBoard:
    """경고 메시지 큐. 모니터의 notifier로 넘기고, 브라우저가 drain()으로 가져간다."""

    def __init__(self) -> None:
        self._messages: List[str] = []

    def __call__(self, message: str) -> None:
        self._messages.append(message)

    def drain(self) -> List[str]:
        messages, self._messages = self._messages, []
        return messages

    def __len__(self) -> int:
        return len(self._messages)
