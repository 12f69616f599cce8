"""
api/session.py — 멀티유저 인메모리 브라우저 세션 (쿠키 기반)

각 브라우저에 UUID 세션 ID를 발급하고, 세션별로 독립된 환경 신호 허브,
전체화면 요청 채널, 경고 메시지 큐, 시험 세션 컨트롤러를 유지한다.
TTL 경과 시 만료되며, 만료된 시험 세션은 제출하지 않고 정리만 한다
(저장된 스냅샷은 남으므로 같은 쿠키로 돌아오면 이어하기가 가능하다).
"""

import threading
import time
import uuid
from typing import Any, Dict, Optional

from config import SESSION_TTL
from school_cbt.services.platform import BrowserFullscreen, EnvironmentSignals, NoticeBoard

_lock = threading.Lock()
_sessions: Dict[str, Dict[str, Any]] = {}
_timestamps: Dict[str, float] = {}


def _new_state() -> Dict[str, Any]:
    return {
        "signals": EnvironmentSignals(),
        "fullscreen": BrowserFullscreen(),
        "notices": NoticeBoard(),
        "exam_session": None,
    }


def _close(state: Dict[str, Any]) -> None:
    exam_session = state.get("exam_session")
    if exam_session is not None:
        exam_session.close()


def create_session(sid: Optional[str] = None) -> str:
    """새 세션을 생성하고 세션 ID를 반환. sid를 주면 그 ID로 만든다."""
    sid = sid or uuid.uuid4().hex
    with _lock:
        _sessions[sid] = _new_state()
        _timestamps[sid] = time.time()
    return sid


def get_session(sid: str) -> Optional[Dict[str, Any]]:
    """세션 ID로 세션 데이터를 가져옴. 만료되었거나 없으면 None."""
    with _lock:
        if sid not in _sessions:
            return None
        if time.time() - _timestamps[sid] > SESSION_TTL:
            _close(_sessions.pop(sid))
            del _timestamps[sid]
            return None
        _timestamps[sid] = time.time()  # 접근 시 갱신
        return _sessions[sid]


def get(sid: str, key: str, default=None):
    """세션에서 값 읽기."""
    state = get_session(sid)
    if state is None:
        return default
    return state.get(key, default)


def put(sid: str, key: str, value) -> None:
    """세션에 값 쓰기."""
    with _lock:
        if sid in _sessions:
            _sessions[sid][key] = value
            _timestamps[sid] = time.time()


def reset(sid: str) -> None:
    """세션 초기화. 진행 중인 시험 세션은 정리된다."""
    with _lock:
        if sid in _sessions:
            _close(_sessions[sid])
            _sessions[sid] = _new_state()
            _timestamps[sid] = time.time()


def cleanup_expired() -> int:
    """만료된 세션을 정리. 제거된 수 반환."""
    now = time.time()
    removed = 0
    with _lock:
        expired = [sid for sid, ts in _timestamps.items() if now - ts > SESSION_TTL]
        for sid in expired:
            _close(_sessions.pop(sid))
            del _timestamps[sid]
            removed += 1
    return removed


def clear_all() -> None:
    with _lock:
        for state in _sessions.values():
            _close(state)
        _sessions.clear()
        _timestamps.clear()
