"""
main.py — TOEIC CBT 응시 서버 진입점
"""

import os
import socket
import sys
import threading
import time
import logging
import webbrowser

from config import BASE_DIR, DEFAULT_HOST, DEFAULT_PORT, LOG_FILE, STATIC_DIR
from api.config import DEFAULT_TIMEOUT

# ── 로깅 설정 ────────────────────────────────────────────────────────────────
try:
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s [%(levelname)s] %(message)s',
        handlers=[
            logging.FileHandler(LOG_FILE, encoding='utf-8'),
            logging.StreamHandler(sys.stdout)
        ]
    )
except PermissionError:
    # 로그 파일 점유 시 콘솔 출력만 사용
    logging.basicConfig(level=logging.INFO)

logger = logging.getLogger(__name__)

# ── 서버 및 네트워크 유틸 ───────────────────────────────────────────────────

def _port_available(port: int) -> bool:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        try:
            s.bind((DEFAULT_HOST, port))
        except OSError:
            return False
        return True


def _find_free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind((DEFAULT_HOST, 0))
        return s.getsockname()[1]


def _wait_for_server(port: int, timeout: float = DEFAULT_TIMEOUT) -> bool:
    deadline = time.time() + timeout
    while time.time() < deadline:
        try:
            with socket.create_connection((DEFAULT_HOST, port), timeout=0.5):
                return True
        except OSError:
            time.sleep(0.1)
    return False


def _open_when_ready(port: int) -> None:
    url = f"http://{DEFAULT_HOST}:{port}"
    if _wait_for_server(port):
        logger.info(f"서버 준비 완료. 브라우저를 엽니다: {url}")
        webbrowser.open(url)
    else:
        logger.error("서버 시작 제한 시간을 초과했습니다.")


# ── 메인 실행 ────────────────────────────────────────────────────────────────

def main() -> None:
    import uvicorn
    from api.app import create_app

    logger.info("=== TOEIC CBT Server Started ===")
    os.chdir(BASE_DIR)

    port = DEFAULT_PORT if _port_available(DEFAULT_PORT) else _find_free_port()
    if os.path.exists(os.path.join(STATIC_DIR, "index.html")):
        threading.Thread(target=_open_when_ready, args=(port,), daemon=True).start()

    logger.info(f"Uvicorn 서버 시작 - Port: {port}")
    try:
        uvicorn.run(create_app(), host=DEFAULT_HOST, port=port, log_level="warning")
    except KeyboardInterrupt:
        logger.info("사용자에 의해 종료되었습니다.")


if __name__ == "__main__":
    main()
