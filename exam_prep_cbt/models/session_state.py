"""
models/session_state.py

시험 응시 상태를 담는 OMR 카드 모델.
Pydantic BaseModel 기반 — 직렬화/역직렬화 및 타입 안전성 확보.
UI 코드 없음.
"""

from datetime import datetime
from enum import Enum
from typing import List, Literal, Optional

from pydantic import Field

from exam_prep_cbt.models.question_model import CamelModel, ExamInfo, Section

Language = Literal["en", "hi"]
LANGUAGES = ("en", "hi")


class QuestionStatus(str, Enum):
    """문제 팔레트에 표시되는 상태. 우선순위: MARKED_ANSWERED > MARKED > ANSWERED > VISITED."""

    NOT_VISITED = "not_visited"
    VISITED = "visited"
    ANSWERED = "answered"
    MARKED = "marked"
    MARKED_ANSWERED = "marked_answered"


class Answer(CamelModel):
    """
    문제 하나에 대한 답안 기록. 세션에서 유일하게 변경되는 문제 단위 데이터.

    Attributes:
        question_id:       문제 id (답안 맵의 key).
        selected_options:  선택한 보기 id 리스트 (순서 유지). 비어 있으면 미응답.
        time_taken:        해당 문제에 머문 누적 시간 (초, 감소하지 않음).
        marked_for_review: 검토 표시 여부.
        visited_at:        최초 방문 시각. 한 번 기록되면 바뀌지 않는다.
        answered_at:       마지막으로 선택을 변경한 시각.
    """

    question_id: str = Field(..., min_length=1)
    selected_options: List[str] = Field(default_factory=list)
    time_taken: int = Field(default=0, ge=0)
    marked_for_review: bool = False
    visited_at: Optional[datetime] = None
    answered_at: Optional[datetime] = None

    @property
    def is_answered(self) -> bool:
        return len(self.selected_options) > 0


class SectionStats(CamelModel):
    """
    섹션별 진행 현황.
    answered와 marked는 서로 겹칠 수 있다 (답하고 검토 표시한 문제는 양쪽에 집계).
    """

    total: int = 0
    answered: int = 0
    marked: int = 0
    not_visited: int = 0


class AttemptPayload(CamelModel):
    """서버의 '응시 시작/재개' 응답으로 세션을 초기화할 때 쓰는 데이터."""

    attempt_id: str = Field(..., min_length=1)
    exam: ExamInfo
    sections: List[Section]
    answers: List[Answer] = Field(default_factory=list)
    current_section_index: int = 0
    current_question_index: int = 0
    time_remaining: int = Field(..., description="남은 시간 (초)")
    language: Language = "en"
