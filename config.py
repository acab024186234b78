import os

# 기본 디렉토리 설정
BASE_DIR = os.path.dirname(os.path.abspath(__file__))

# 경로 설정
STATIC_DIR = os.path.join(BASE_DIR, "static")
LOG_FILE = os.path.join(BASE_DIR, "launch.log")

# 서버 설정
DEFAULT_HOST = os.getenv("HOST", "127.0.0.1")
DEFAULT_PORT = int(os.getenv("PORT", "8000"))

# 백엔드 REST API 설정
API_BASE_URL = os.getenv("TOEIC_API_BASE_URL", "http://localhost:8080/api")
API_TIMEOUT = float(os.getenv("TOEIC_API_TIMEOUT", "15"))

# 시험 시간 설정
FULL_EXAM_SECONDS = 7200        # 전체 시험은 항상 120분
TIME_WARNING_SECONDS = 60       # 남은 시간 1분 경고

# 답안 동기화 / 오디오 가드 설정 (초 단위)
ANSWER_SYNC_DELAY = 0.2
AUTO_ADVANCE_COUNTDOWN = 3      # 화면 표시용 카운트다운
AUTO_ADVANCE_DELAY = 5.0        # 실제 다음 그룹/파트 전환 타이머
SEEK_TOLERANCE = 0.5
SEEK_LOCK_SECONDS = 0.3

# 잘못된 시험 처리
CATALOG_PATH = "/practice-tests"
LOGIN_PATH = "/login"
REDIRECT_DELAY = 2.0
# 파트 로딩 중 네트워크 오류를 치명적 오류 대신 재시도 가능 상태로 둘지 여부
RETRY_TRANSIENT_PART_ERRORS = os.getenv("RETRY_TRANSIENT_PART_ERRORS", "0") == "1"

# 파트 분류 (TOEIC LR)
LISTENING_PARTS = (1, 2, 3, 4)
READING_PARTS = (5, 6, 7)
