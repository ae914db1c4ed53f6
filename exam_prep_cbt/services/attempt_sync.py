"""
services/attempt_sync.py

응시 세션과 원격 서버 사이의 동기화 (자동 저장 / heartbeat / 제출).

설계 원칙:
- 한 세션의 연산은 한 번에 하나씩만 호출된다 (api 계층이 세션별 잠금으로 직렬화)
- 1초 틱마다 타이머 감소, HEARTBEAT_INTERVAL 틱마다 heartbeat 전송
- heartbeat/자동 저장 실패는 시험을 중단시키지 않는다
- 남은 시간이 0이 되거나 서버가 요청하면 자동 제출 (한 번만)
- client가 없으면 오프라인 모드: 제출 시 답안 목록만 반환
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from config import HEARTBEAT_INTERVAL
from exam_prep_cbt.services.attempt_client import AttemptAPIClient, AttemptAPIError
from exam_prep_cbt.services.attempt_session import ExamAttemptSession

logger = logging.getLogger(__name__)


class AttemptAlreadySubmittedError(RuntimeError):
    pass


@dataclass
class TickResult:
    time_remaining: int
    submitted: bool
    auto_submitted: bool = False


class AttemptSync:
    def __init__(
        self,
        session: ExamAttemptSession,
        client: Optional[AttemptAPIClient] = None,
        *,
        heartbeat_interval: int = HEARTBEAT_INTERVAL,
    ):
        self.session = session
        self.client = client
        self._heartbeat_interval = max(1, int(heartbeat_interval))
        self._ticks = 0
        self._submit_requested = False
        self.submitted = False
        self.result: Optional[Dict[str, Any]] = None

    def reset(self) -> None:
        """새 응시를 위해 제출 상태와 틱 카운터를 비운다."""
        self._ticks = 0
        self._submit_requested = False
        self.submitted = False
        self.result = None

    # ── 1초 틱 ───────────────────────────────────────────────────────────────

    def tick(self) -> TickResult:
        if self.submitted or not self.session.is_initialized:
            return TickResult(self.session.time_remaining, self.submitted)

        self.session.decrement_timer()
        self._ticks += 1

        if self.client is not None and self._ticks % self._heartbeat_interval == 0:
            # 서버의 제출 요청은 제출이 성공할 때까지 유지
            if self._heartbeat():
                self._submit_requested = True

        if self.session.is_time_up or self._submit_requested:
            reason = "시험 시간 종료" if self.session.is_time_up else "서버 제출 요청"
            logger.info(f"{reason} → 자동 제출: attempt={self.session.attempt_id}")
            try:
                self.submit(auto_submitted=True)
            except AttemptAPIError as e:
                # 다음 틱에서 다시 시도
                logger.error(f"자동 제출 실패 attempt={self.session.attempt_id}: {e}")
                return TickResult(self.session.time_remaining, False)
            return TickResult(self.session.time_remaining, True, auto_submitted=True)

        return TickResult(self.session.time_remaining, False)

    def _heartbeat(self) -> bool:
        s = self.session
        try:
            result = self.client.send_heartbeat(
                s.attempt_id,
                s.current_section_index,
                s.current_question_index,
                s.time_remaining,
            )
        except AttemptAPIError as e:
            # heartbeat 실패는 치명적이지 않다
            logger.warning(f"heartbeat 실패 attempt={s.attempt_id}: {e}")
            return False
        return result.should_submit

    def run(self, stop_event: threading.Event) -> None:
        """제출되거나 stop_event가 설정될 때까지 1초마다 tick()."""
        while not self.submitted and not stop_event.wait(1.0):
            self.tick()

    # ── 답안 저장 ────────────────────────────────────────────────────────────

    def save_answer(self, question_id: str, selected_options: List[str], time_taken: int = 0) -> None:
        """
        서버에 먼저 저장한 뒤 세션에 반영한다.
        서버 저장이 실패해도 로컬 답안은 기록되고 session.error에 사유가 남는다.
        """
        if self.submitted:
            raise AttemptAlreadySubmittedError("이미 제출된 시험입니다.")

        s = self.session
        # 처음 답하는 문제도 소요 시간이 누적되도록 답안 기록을 먼저 만든다
        s.mark_as_visited(question_id)
        if time_taken:
            s.add_time_spent(question_id, time_taken)

        if self.client is not None:
            s.is_saving = True
            try:
                self.client.save_answer(
                    s.attempt_id,
                    question_id,
                    selected_options,
                    time_taken=s.get_answer(question_id).time_taken,
                )
                s.error = None
            except AttemptAPIError as e:
                logger.warning(f"답안 저장 실패 question={question_id}: {e}")
                s.error = e.message
            finally:
                s.is_saving = False

        s.set_answer(question_id, selected_options)

    def toggle_mark(self, question_id: str) -> bool:
        if self.submitted:
            raise AttemptAlreadySubmittedError("이미 제출된 시험입니다.")

        marked = self.session.toggle_mark_for_review(question_id)
        if self.client is not None:
            try:
                self.client.mark_for_review(self.session.attempt_id, question_id, marked)
            except AttemptAPIError as e:
                logger.warning(f"검토 표시 동기화 실패 question={question_id}: {e}")
                self.session.error = e.message
        return marked

    # ── 제출 ─────────────────────────────────────────────────────────────────

    def submit(self, auto_submitted: bool = False) -> Dict[str, Any]:
        """
        전체 답안을 서버로 보낸다. 실패하면 AttemptAPIError를 그대로 던지고
        제출 상태는 바뀌지 않는다 (재시도 가능).
        """
        if self.submitted:
            raise AttemptAlreadySubmittedError("이미 제출된 시험입니다.")

        s = self.session
        answers = s.all_answers()
        s.is_submitting = True
        try:
            if self.client is not None:
                result = self.client.submit(s.attempt_id, answers, auto_submitted=auto_submitted)
            else:
                result = {
                    "attemptId": s.attempt_id,
                    "answers": [a.model_dump(mode="json", by_alias=True) for a in answers],
                }
        except AttemptAPIError as e:
            s.error = e.message
            raise
        finally:
            s.is_submitting = False

        self.submitted = True
        self.result = {**result, "autoSubmitted": auto_submitted}
        logger.info(
            f"답안 제출 완료: attempt={s.attempt_id} 답안 {len(answers)}개 "
            f"(자동 제출: {auto_submitted})"
        )
        return self.result
