import os

# 기본 디렉토리 설정
BASE_DIR = os.path.dirname(os.path.abspath(__file__))

# 경로 설정
STATIC_DIR = os.path.join(BASE_DIR, "static")
LOG_FILE = os.path.join(BASE_DIR, "launch.log")
DATA_DIR = os.getenv("CBT_DATA_DIR", os.path.join(BASE_DIR, "data"))
EXAMS_DIR = os.getenv("CBT_EXAMS_DIR", os.path.join(BASE_DIR, "exams"))
MANIFEST_FILE = "manifest.json"   # EXAMS_DIR 안의 시험 목록

# 서버 설정
DEFAULT_HOST = os.getenv("HOST", "127.0.0.1")
DEFAULT_PORT = int(os.getenv("PORT", "0"))   # 0이면 빈 포트 자동 선택
SERVER_START_TIMEOUT = 15.0
SESSION_TTL = 3 * 3600                       # 브라우저 세션 유지 시간 (초)
SESSION_CLEANUP_INTERVAL = 300

# 무결성 모니터 설정
VIOLATION_DEBOUNCE_SECONDS = 1.0     # 연속 위반 신호 병합 구간
FULLSCREEN_REENTRY_DELAY = 0.2       # 전체화면 이탈 후 재진입 시도까지 대기
FULLSCREEN_REQUEST_TIMEOUT = 5.0     # 브라우저 응답 대기 한도
DEFAULT_VIOLATION_THRESHOLD = 3

# 시험 세션 설정
DEFAULT_DURATION_MINUTES = 30
DEFAULT_PASS_MARK = 50
TICK_INTERVAL_SECONDS = 1.0
SNAPSHOT_INTERVAL_SECONDS = 5        # 카운트다운 5초마다 스냅샷 저장
STORAGE_KEY = "school_cbt_active_session"
RESULT_KEY_PREFIX = "exam_result_"

# 결과 제출 설정
WEBHOOK_URL = os.getenv("CBT_WEBHOOK_URL", "")
SUBMIT_MAX_RETRIES = 3
SUBMIT_RETRY_DELAY = 2.0
SUBMIT_TIMEOUT = 15.0
RESULT_VERSION = "1.0.0"
