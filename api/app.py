"""
api/app.py — FastAPI 앱 인스턴스 + 세션 미들웨어 + 만료 세션 정리
"""

import logging
import threading
import time

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware

from config import (
    CLEANUP_INTERVAL,
    EXAM_API_TOKEN,
    EXAM_API_URL,
    HTTP_TIMEOUT,
    SESSION_TTL,
)
from api.routes import router
import api.session as session
from exam_prep_cbt.services.attempt_client import AttemptAPIClient

SESSION_COOKIE = "cbt_session"

logger = logging.getLogger(__name__)


def _make_client() -> AttemptAPIClient:
    return AttemptAPIClient(EXAM_API_URL, token=EXAM_API_TOKEN, timeout_seconds=HTTP_TIMEOUT)


def create_app(start_cleanup: bool = True) -> FastAPI:
    app = FastAPI(title="Exam Prep CBT", docs_url=None, redoc_url=None)

    if EXAM_API_URL:
        logger.info(f"원격 시험 서버 연결: {EXAM_API_URL}")
        session.configure_client(_make_client)
    else:
        logger.info("EXAM_API_URL 미설정: 오프라인 모드로 실행합니다.")

    # CORS (모바일 브라우저 등 다양한 출처 허용)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # 세션 미들웨어: 쿠키에서 세션 ID를 읽고, 없으면 새로 발급
    @app.middleware("http")
    async def session_middleware(request: Request, call_next):
        sid = request.cookies.get(SESSION_COOKIE)
        if not sid or session.get_session(sid) is None:
            sid = session.create_session()

        request.state.session_id = sid
        response: Response = await call_next(request)
        response.set_cookie(
            key=SESSION_COOKIE,
            value=sid,
            httponly=True,
            samesite="lax",
            max_age=SESSION_TTL,
        )
        return response

    app.include_router(router)

    # 만료 세션 주기적 정리
    def _cleanup_loop():
        while True:
            time.sleep(CLEANUP_INTERVAL)
            removed = session.cleanup_expired()
            if removed:
                logger.info(f"만료 세션 {removed}개 정리")

    if start_cleanup:
        t = threading.Thread(target=_cleanup_loop, daemon=True)
        t.start()

    return app
