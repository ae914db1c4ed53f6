"""
services/attempt_session.py

시간 제한이 있는 다중 섹션 시험 응시 세션 (상태 머신).
순수 인메모리 상태 (I/O, 스레드 없음).

상태 구성:
  - 읽기 전용: exam(ExamInfo), sections(List[Section])
  - 변경 가능: 답안 맵, 검토 표시 집합, 커서(섹션/문제 인덱스), 남은 시간, 표시 언어

단일 원천 규칙:
  - 방문 여부는 답안 맵의 visited_at이 기준 (visited_questions는 파생 값)
  - 검토 표시는 _marked 집합이 기준, 답안 기록 시 _store()가 플래그를 복사
"""

import logging
import time
from datetime import datetime, timezone
from typing import Callable, Dict, FrozenSet, List, Optional, Set

from exam_prep_cbt.models.question_model import ExamInfo, Question, Section
from exam_prep_cbt.models.session_state import (
    LANGUAGES,
    Answer,
    AttemptPayload,
    Language,
    QuestionStatus,
    SectionStats,
)

logger = logging.getLogger(__name__)


class InvalidAttemptError(ValueError):
    """초기화 payload가 세션 전제 조건을 만족하지 않을 때."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ExamAttemptSession:
    """
    응시 1회분의 전체 상태를 보유하고 UI 계층에 변경/조회 연산을 제공한다.

    생성 직후에는 빈 상태이며, initialize()로 서버 데이터를 채운 뒤 사용한다.
    reset() 후에는 다시 initialize() 할 수 있다.
    """

    def __init__(self, clock: Callable[[], datetime] = _utcnow):
        self._clock = clock
        self._clear()

    def _clear(self) -> None:
        self.attempt_id: Optional[str] = None
        self.exam: Optional[ExamInfo] = None
        self.sections: List[Section] = []
        self._answers: Dict[str, Answer] = {}
        self._marked: Set[str] = set()
        self.current_section_index = 0
        self.current_question_index = 0
        self.time_remaining = 0
        self.start_time: Optional[float] = None
        self.language: Language = "en"

        # UI 상태 플래그
        self.is_loading = False
        self.is_saving = False
        self.is_submitting = False
        self.error: Optional[str] = None

    # ── 초기화 / 종료 ────────────────────────────────────────────────────────

    def initialize(self, payload: AttemptPayload) -> None:
        """
        서버 payload로 전체 상태를 교체한다.

        이전 답안(answers)에서 답안 맵과 검토 표시를 복원하고,
        커서가 가리키는 문제를 곧바로 방문 처리한다.

        Raises:
            InvalidAttemptError: 섹션이 비었거나, 문제가 없는 섹션이 있거나,
                                 커서/남은 시간이 범위를 벗어난 경우.
                                 이 경우 기존 상태는 그대로 유지된다.
        """
        _validate_payload(payload)

        self._clear()
        self.attempt_id = payload.attempt_id
        self.exam = payload.exam
        self.sections = list(payload.sections)
        for answer in payload.answers:
            self._answers[answer.question_id] = answer.model_copy(deep=True)
            if answer.marked_for_review:
                self._marked.add(answer.question_id)
        self.current_section_index = payload.current_section_index
        self.current_question_index = payload.current_question_index
        self.time_remaining = payload.time_remaining
        self.start_time = time.time()
        self.language = payload.language

        current = self.current_question()
        self.mark_as_visited(current.id)

        logger.info(
            f"응시 세션 초기화: attempt={self.attempt_id} "
            f"섹션 {len(self.sections)}개, 이전 답안 {len(payload.answers)}개, "
            f"남은 시간 {self.time_remaining}초"
        )

    def reset(self) -> None:
        """모든 상태를 버린다. 서버 저장은 호출 측 책임."""
        if self.attempt_id:
            logger.info(f"응시 세션 종료: attempt={self.attempt_id}")
        self._clear()

    @property
    def is_initialized(self) -> bool:
        return self.attempt_id is not None

    # ── 답안 변경 ────────────────────────────────────────────────────────────

    def _store(self, answer: Answer) -> Answer:
        """답안 기록의 유일한 쓰기 경로. 검토 표시는 _marked 집합에서 복사한다."""
        answer.marked_for_review = answer.question_id in self._marked
        self._answers[answer.question_id] = answer
        return answer

    def set_answer(self, question_id: str, selected_options: List[str]) -> Answer:
        """
        선택을 교체하고 answered_at을 갱신한다. 빈 리스트는 응답 지우기.
        time_taken, marked_for_review, visited_at은 유지된다. 반환값은 사본.
        """
        now = self._clock()
        existing = self._answers.get(question_id)
        if existing is None:
            # 선택했다는 것은 화면에 표시되었다는 뜻
            answer = Answer(question_id=question_id, visited_at=now)
        else:
            answer = existing
            if answer.visited_at is None:
                answer.visited_at = now
        answer.selected_options = list(selected_options)
        answer.answered_at = now
        return self._store(answer).model_copy(deep=True)

    def toggle_mark_for_review(self, question_id: str) -> bool:
        """검토 표시를 뒤집고 새 상태를 반환한다. 두 번 호출하면 원상태."""
        if question_id in self._marked:
            self._marked.discard(question_id)
        else:
            self._marked.add(question_id)

        existing = self._answers.get(question_id)
        if existing is not None:
            self._store(existing)
        return question_id in self._marked

    def mark_as_visited(self, question_id: str) -> Answer:
        """최초 방문 시각은 한 번만 기록한다. 반환값은 사본."""
        answer = self._answers.get(question_id)
        if answer is None:
            answer = self._store(Answer(question_id=question_id, visited_at=self._clock()))
        elif answer.visited_at is None:
            answer.visited_at = self._clock()
            self._store(answer)
        return answer.model_copy(deep=True)

    def add_time_spent(self, question_id: str, seconds: int) -> bool:
        """
        문제에 머문 시간을 누적한다.
        답안 기록이 없는(한 번도 표시되지 않은) 문제는 무시하고 False 반환.
        """
        if seconds < 0:
            raise ValueError(f"소요 시간은 음수일 수 없습니다: {seconds}")
        answer = self._answers.get(question_id)
        if answer is None:
            return False
        answer.time_taken += int(seconds)
        return True

    # ── 이동 ─────────────────────────────────────────────────────────────────

    def _resolve(self, section_index: int, question_index: int) -> Optional[Question]:
        if not 0 <= section_index < len(self.sections):
            return None
        questions = self.sections[section_index].questions
        if not 0 <= question_index < len(questions):
            return None
        return questions[question_index]

    def navigate_to(self, section_index: int, question_index: int) -> bool:
        """
        대상 문제를 방문 처리한 뒤 커서를 옮긴다.
        존재하지 않는 위치면 아무것도 하지 않고 False.
        """
        question = self._resolve(section_index, question_index)
        if question is None:
            logger.debug(f"이동 무시: ({section_index}, {question_index}) 범위 밖")
            return False

        self.mark_as_visited(question.id)
        self.current_section_index = section_index
        self.current_question_index = question_index
        return True

    @property
    def _section_navigation(self) -> bool:
        return bool(self.exam and self.exam.allow_section_navigation)

    def next_question(self) -> bool:
        section = self.current_section()
        if section is None:
            return False

        if self.current_question_index < len(section.questions) - 1:
            return self.navigate_to(self.current_section_index, self.current_question_index + 1)

        # 다음 섹션은 섹션 간 이동이 허용된 경우에만
        if self._section_navigation and self.current_section_index < len(self.sections) - 1:
            return self.navigate_to(self.current_section_index + 1, 0)
        return False

    def prev_question(self) -> bool:
        if self.current_question_index > 0:
            return self.navigate_to(self.current_section_index, self.current_question_index - 1)

        if self._section_navigation and self.current_section_index > 0:
            prev_section = self.sections[self.current_section_index - 1]
            return self.navigate_to(self.current_section_index - 1, len(prev_section.questions) - 1)
        return False

    # ── 타이머 / 언어 ────────────────────────────────────────────────────────

    def decrement_timer(self) -> int:
        """1초 감소. 0 아래로 내려가지 않는다."""
        if self.time_remaining > 0:
            self.time_remaining -= 1
        return self.time_remaining

    @property
    def is_time_up(self) -> bool:
        return self.is_initialized and self.time_remaining <= 0

    def set_language(self, language: Language) -> None:
        if language not in LANGUAGES:
            raise ValueError(f"지원하지 않는 언어입니다: {language}")
        self.language = language

    # ── 조회 ─────────────────────────────────────────────────────────────────

    def current_section(self) -> Optional[Section]:
        if not 0 <= self.current_section_index < len(self.sections):
            return None
        return self.sections[self.current_section_index]

    def current_question(self) -> Optional[Question]:
        return self._resolve(self.current_section_index, self.current_question_index)

    def find_question(self, question_id: str) -> Optional[Question]:
        for section in self.sections:
            for q in section.questions:
                if q.id == question_id:
                    return q
        return None

    def get_answer(self, question_id: str) -> Optional[Answer]:
        answer = self._answers.get(question_id)
        return answer.model_copy(deep=True) if answer is not None else None

    @property
    def visited_questions(self) -> FrozenSet[str]:
        return frozenset(qid for qid, a in self._answers.items() if a.visited_at is not None)

    @property
    def marked_questions(self) -> FrozenSet[str]:
        return frozenset(self._marked)

    def _flags(self, question_id: str):
        answer = self._answers.get(question_id)
        is_answered = answer is not None and answer.is_answered
        is_visited = answer is not None and answer.visited_at is not None
        return is_answered, question_id in self._marked, is_visited

    def question_status(self, question_id: str) -> QuestionStatus:
        is_answered, is_marked, is_visited = self._flags(question_id)

        if is_marked and is_answered:
            return QuestionStatus.MARKED_ANSWERED
        if is_marked:
            return QuestionStatus.MARKED
        if is_answered:
            return QuestionStatus.ANSWERED
        if is_visited:
            return QuestionStatus.VISITED
        return QuestionStatus.NOT_VISITED

    def section_stats(self, section_id: str) -> SectionStats:
        section = next((s for s in self.sections if s.id == section_id), None)
        if section is None:
            return SectionStats()

        stats = SectionStats(total=len(section.questions))
        for q in section.questions:
            is_answered, is_marked, is_visited = self._flags(q.id)
            if is_answered:
                stats.answered += 1
            if is_marked:
                stats.marked += 1
            if not is_visited:
                stats.not_visited += 1
        return stats

    def all_answers(self) -> List[Answer]:
        """제출/자동 저장용 스냅샷. 반환값을 바꿔도 세션에는 영향 없음."""
        return [a.model_copy(deep=True) for a in self._answers.values()]


def _validate_payload(payload: AttemptPayload) -> None:
    if not payload.sections:
        raise InvalidAttemptError("섹션이 없는 시험은 시작할 수 없습니다.")

    for i, section in enumerate(payload.sections):
        if not section.questions:
            raise InvalidAttemptError(f"섹션 {i}({section.id})에 문제가 없습니다.")

    s_idx, q_idx = payload.current_section_index, payload.current_question_index
    if not 0 <= s_idx < len(payload.sections):
        raise InvalidAttemptError(
            f"섹션 인덱스 {s_idx}가 범위를 벗어났습니다 (섹션 {len(payload.sections)}개)."
        )
    n_questions = len(payload.sections[s_idx].questions)
    if not 0 <= q_idx < n_questions:
        raise InvalidAttemptError(
            f"문제 인덱스 {q_idx}가 범위를 벗어났습니다 (섹션 {s_idx}의 문제 {n_questions}개)."
        )

    if payload.time_remaining < 0:
        raise InvalidAttemptError(f"남은 시간은 음수일 수 없습니다: {payload.time_remaining}")
