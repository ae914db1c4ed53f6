"""
api/session.py — 멀티유저 인메모리 세션 (쿠키 기반)

각 사용자에게 UUID 세션 ID를 발급하고, 세션별로 독립된 응시 상태
(ExamAttemptSession + AttemptSync)를 유지.
같은 세션의 요청은 세션별 asyncio.Lock으로 하나씩 처리한다.
TTL(기본 1시간) 경과 시 자동 만료.
"""

import asyncio
import threading
import time
import uuid
from typing import Any, Callable, Optional

from config import SESSION_TTL
from exam_prep_cbt.services.attempt_client import AttemptAPIClient
from exam_prep_cbt.services.attempt_session import ExamAttemptSession
from exam_prep_cbt.services.attempt_sync import AttemptSync

_lock = threading.Lock()
_sessions: dict[str, dict[str, Any]] = {}
_timestamps: dict[str, float] = {}


def _offline() -> Optional[AttemptAPIClient]:
    return None


# 원격 서버 클라이언트 팩토리 (None을 반환하면 오프라인 모드)
_client_factory: Callable[[], Optional[AttemptAPIClient]] = _offline


def configure_client(factory: Callable[[], Optional[AttemptAPIClient]]) -> None:
    """새 세션마다 사용할 원격 서버 클라이언트 팩토리를 등록."""
    global _client_factory
    _client_factory = factory


def _new_state() -> dict[str, Any]:
    attempt = ExamAttemptSession()
    return {
        "attempt": attempt,
        "sync": AttemptSync(attempt, _client_factory()),
        "lock": asyncio.Lock(),
    }


def create_session() -> str:
    """새 세션을 생성하고 세션 ID를 반환."""
    sid = uuid.uuid4().hex
    with _lock:
        _sessions[sid] = _new_state()
        _timestamps[sid] = time.time()
    return sid


def get_session(sid: str) -> dict[str, Any] | None:
    """세션 ID로 세션 데이터를 가져옴. 만료되었거나 없으면 None."""
    with _lock:
        if sid not in _sessions:
            return None
        if time.time() - _timestamps[sid] > SESSION_TTL:
            _drop(sid)
            return None
        _timestamps[sid] = time.time()  # 접근 시 갱신
        return _sessions[sid]


def get_attempt(sid: str) -> ExamAttemptSession | None:
    session = get_session(sid)
    return session["attempt"] if session else None


def get_sync(sid: str) -> AttemptSync | None:
    session = get_session(sid)
    return session["sync"] if session else None


def get_lock(sid: str) -> asyncio.Lock | None:
    session = get_session(sid)
    return session["lock"] if session else None


def reset(sid: str) -> None:
    """응시 상태 초기화 (원격 클라이언트는 유지)."""
    with _lock:
        if sid in _sessions:
            _sessions[sid]["attempt"].reset()
            _sessions[sid]["sync"].reset()
            _timestamps[sid] = time.time()


def _drop(sid: str) -> None:
    client = _sessions[sid]["sync"].client
    if client is not None:
        client.close()
    del _sessions[sid]
    del _timestamps[sid]


def cleanup_expired() -> int:
    """만료된 세션을 정리. 제거된 수 반환."""
    now = time.time()
    removed = 0
    with _lock:
        expired = [sid for sid, ts in _timestamps.items() if now - ts > SESSION_TTL]
        for sid in expired:
            _drop(sid)
            removed += 1
    return removed
