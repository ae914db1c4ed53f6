"""
services/attempt_client.py

원격 시험 서버 전용 HTTP 클라이언트.
세션(ExamAttemptSession)은 I/O를 하지 않으므로 서버 통신은 모두 여기서 한다.

ENDPOINTS:
  - POST /test/exam/{exam_id}/start
  - PUT  /test/attempt/{attempt_id}/answer
  - POST /test/attempt/{attempt_id}/review
  - POST /test/attempt/{attempt_id}/heartbeat
  - POST /test/attempt/{attempt_id}/submit

응답 형식: {"success": bool, "data": {...}, "error": {"message": str, "code": str}}
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import requests

from exam_prep_cbt.models.session_state import Answer, AttemptPayload

logger = logging.getLogger(__name__)


class AttemptAPIError(RuntimeError):
    """서버 통신 실패 또는 success=false 응답."""

    def __init__(self, message: str, code: str = "", status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code


@dataclass
class HeartbeatResult:
    should_submit: bool
    server_time: int


class AttemptAPIClient:
    def __init__(
        self,
        base_url: str,
        *,
        token: str = "",
        timeout_seconds: float = 10.0,
        session: Optional[requests.Session] = None,
    ):
        if not base_url:
            raise ValueError("base_url is required")

        self._base_url = str(base_url).rstrip("/")
        self._timeout = float(timeout_seconds)
        self._headers = {"Content-Type": "application/json"}
        if token:
            self._headers["Authorization"] = f"Bearer {token}"

        # keep-alive 재사용
        self._session = session or requests.Session()

    def close(self) -> None:
        self._session.close()

    def _request(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        url = f"{self._base_url}{path}"
        try:
            resp = self._session.request(
                method,
                url,
                json=payload,
                headers=self._headers,
                timeout=self._timeout,
            )
        except requests.RequestException as e:
            logger.error(f"서버 요청 실패 {method} {path}: {e}")
            raise AttemptAPIError(f"시험 서버에 연결할 수 없습니다: {e}", code="NETWORK_ERROR") from e

        try:
            body = resp.json() if resp.content else {}
        except ValueError:
            body = {}

        if not resp.ok or not body.get("success", False):
            error = body.get("error") or {}
            message = error.get("message") or f"HTTP {resp.status_code}"
            logger.warning(f"서버 오류 응답 {method} {path}: {resp.status_code} {message}")
            raise AttemptAPIError(message, code=error.get("code", ""), status_code=resp.status_code)

        return body.get("data") or {}

    # ── 응시 시작 ────────────────────────────────────────────────────────────

    def start_attempt(self, exam_id: str, language: str = "en") -> AttemptPayload:
        """응시를 시작(또는 진행 중인 응시를 재개)하고 초기화 payload를 반환."""
        data = self._request("POST", f"/test/exam/{exam_id}/start", {"language": language})
        data.setdefault("answers", [])
        data.setdefault("language", language)
        return AttemptPayload.model_validate(data)

    # ── 응시 중 동기화 ───────────────────────────────────────────────────────

    def save_answer(
        self,
        attempt_id: str,
        question_id: str,
        selected_options: List[str],
        time_taken: Optional[int] = None,
    ) -> None:
        payload: Dict[str, Any] = {"questionId": question_id, "selectedOptions": list(selected_options)}
        if time_taken is not None:
            payload["timeTaken"] = time_taken
        self._request("PUT", f"/test/attempt/{attempt_id}/answer", payload)

    def mark_for_review(self, attempt_id: str, question_id: str, marked: bool) -> None:
        self._request(
            "POST",
            f"/test/attempt/{attempt_id}/review",
            {"questionId": question_id, "markedForReview": marked},
        )

    def send_heartbeat(
        self,
        attempt_id: str,
        current_section_index: int,
        current_question_index: int,
        time_remaining: int,
    ) -> HeartbeatResult:
        data = self._request(
            "POST",
            f"/test/attempt/{attempt_id}/heartbeat",
            {
                "currentSectionIndex": current_section_index,
                "currentQuestionIndex": current_question_index,
                "timeRemaining": time_remaining,
            },
        )
        return HeartbeatResult(
            should_submit=bool(data.get("shouldSubmit", False)),
            server_time=int(data.get("serverTime", time_remaining)),
        )

    # ── 제출 ─────────────────────────────────────────────────────────────────

    def submit(self, attempt_id: str, answers: List[Answer], auto_submitted: bool = False) -> Dict[str, Any]:
        return self._request(
            "POST",
            f"/test/attempt/{attempt_id}/submit",
            {
                "autoSubmitted": auto_submitted,
                "answers": [a.model_dump(mode="json", by_alias=True) for a in answers],
            },
        )
