"""
main.py — SchoolCBT 응시 서버 진입점

uvicorn으로 API 서버를 띄우고, 준비되면 브라우저(앱 모드)를 연다.
"""

import logging
import os
import socket
import subprocess
import sys
import threading
import time
import webbrowser

from config import BASE_DIR, DEFAULT_HOST, DEFAULT_PORT, LOG_FILE, SERVER_START_TIMEOUT

logger = logging.getLogger(__name__)

_BROWSER_CANDIDATES = [
    r"C:\Program Files\Google\Chrome\Application\chrome.exe",
    r"C:\Program Files (x86)\Google\Chrome\Application\chrome.exe",
    r"C:\Program Files\Microsoft\Edge\Application\msedge.exe",
    r"C:\Program Files (x86)\Microsoft\Edge\Application\msedge.exe",
]


# ── 로깅 설정 ────────────────────────────────────────────────────────────────

def setup_logging(level: int = logging.INFO) -> None:
    fmt = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    try:
        logging.basicConfig(
            level=level,
            format=fmt,
            handlers=[
                logging.FileHandler(LOG_FILE, encoding="utf-8"),
                logging.StreamHandler(sys.stdout),
            ],
        )
    except PermissionError:
        # 로그 파일 점유 시 콘솔 출력만 사용
        logging.basicConfig(level=level, format=fmt)


# ── 서버 및 네트워크 유틸 ───────────────────────────────────────────────────

def _find_free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind((DEFAULT_HOST, 0))
        return s.getsockname()[1]


def _wait_for_server(port: int, timeout: float = SERVER_START_TIMEOUT) -> bool:
    deadline = time.time() + timeout
    while time.time() < deadline:
        try:
            with socket.create_connection((DEFAULT_HOST, port), timeout=0.5):
                return True
        except OSError:
            time.sleep(0.1)
    return False


def _open_browser(url: str) -> None:
    # 앱 모드 창이면 주소창/탭이 없어 시험 화면만 보인다
    flags = [f"--app={url}", "--no-first-run", "--window-size=1280,800"]
    for path in _BROWSER_CANDIDATES:
        if os.path.exists(path):
            logger.info(f"브라우저 실행: {path}")
            subprocess.Popen([path] + flags)
            return
    webbrowser.open(url)


def _run_server(port: int) -> None:
    import uvicorn
    from api.app import create_app

    logger.info(f"Uvicorn 서버 시작 - {DEFAULT_HOST}:{port}")
    try:
        uvicorn.run(create_app(), host=DEFAULT_HOST, port=port, log_level="warning")
    except Exception:
        logger.exception("서버 오류 발생")


# ── 메인 실행 ────────────────────────────────────────────────────────────────

def main() -> int:
    setup_logging()
    logger.info("=== School CBT 응시 서버 시작 ===")
    os.chdir(BASE_DIR)

    port = DEFAULT_PORT or _find_free_port()
    server_thread = threading.Thread(target=_run_server, args=(port,), daemon=True)
    server_thread.start()

    if not _wait_for_server(port):
        logger.error("서버 시작 제한 시간을 초과했습니다. 이미 실행 중인 프로세스가 있는지 확인하세요.")
        return 1

    logger.info("서버 준비 완료. 브라우저를 엽니다.")
    if os.getenv("CBT_NO_BROWSER") != "1":
        _open_browser(f"http://{DEFAULT_HOST}:{port}")

    try:
        while server_thread.is_alive():
            server_thread.join(timeout=10)
    except KeyboardInterrupt:
        logger.info("사용자에 의해 종료되었습니다.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
