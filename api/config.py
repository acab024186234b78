# 세션 설정
SESSION_COOKIE = "cbt_session"
SESSION_TTL = 3600          # 1시간
CLEANUP_INTERVAL = 300      # 만료 세션 정리 주기 (5분)

# 서버 기동 대기 시간 (초)
DEFAULT_TIMEOUT = 15.0
