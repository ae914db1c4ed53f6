import os

# 기본 디렉토리 설정
BASE_DIR = os.path.dirname(os.path.abspath(__file__))

# 경로 설정
LOG_FILE = os.getenv("LOG_FILE", os.path.join(BASE_DIR, "launch.log"))

# 서버 설정
DEFAULT_HOST = os.getenv("HOST", "127.0.0.1")
DEFAULT_PORT = int(os.getenv("PORT", "8000"))

# 원격 시험 서버 설정 (비어 있으면 오프라인 모드: 답안은 로컬에만 보관)
EXAM_API_URL = os.getenv("EXAM_API_URL", "")
EXAM_API_TOKEN = os.getenv("EXAM_API_TOKEN", "")
HTTP_TIMEOUT = float(os.getenv("HTTP_TIMEOUT", "10.0"))

# 시험 진행 설정
HEARTBEAT_INTERVAL = int(os.getenv("HEARTBEAT_INTERVAL", "30"))  # 틱(초) 단위
TIMER_WARNING_SECONDS = 300   # 남은 시간 5분 이하이면 경고 표시

# 세션 설정
SESSION_TTL = int(os.getenv("SESSION_TTL", "3600"))  # 1시간
CLEANUP_INTERVAL = 300                               # 만료 세션 정리 주기 (초)
