from datetime import datetime, timedelta, timezone

import pytest

from exam_prep_cbt.models.session_state import AttemptPayload
from exam_prep_cbt.services.attempt_session import ExamAttemptSession


def _question(qid: str, qtype: str = "single", passage: dict | None = None) -> dict:
    q = {
        "_id": qid,
        "questionType": qtype,
        "question": f"Question {qid}?",
        "questionHindi": f"प्रश्न {qid}?",
        "options": [
            {"id": f"{qid}_a", "text": "A", "textHi": "क"},
            {"id": f"{qid}_b", "text": "B", "textHi": "ख"},
            {"id": f"{qid}_c", "text": "C"},
            {"id": f"{qid}_d", "text": "D"},
        ],
    }
    if passage is not None:
        q["comprehensionPassage"] = passage
    return q


def make_payload_dict(
    allow_section_navigation: bool = False,
    time_remaining: int = 600,
    answers: list | None = None,
    section_index: int = 0,
    question_index: int = 0,
) -> dict:
    """섹션 A = [q1, q2], 섹션 B = [q3] 구성의 시험 payload (서버 응답 형식)."""
    return {
        "attemptId": "att-1",
        "exam": {
            "_id": "exam-1",
            "title": "SSC Mock 1",
            "titleHi": "एसएससी मॉक 1",
            "duration": 10,
            "totalQuestions": 3,
            "totalMarks": 6,
            "defaultPositiveMarks": 2,
            "defaultNegativeMarks": 0.5,
            "allowSectionNavigation": allow_section_navigation,
            "shuffleQuestions": False,
            "shuffleOptions": False,
        },
        "sections": [
            {"_id": "sec-a", "title": "Reasoning", "order": 1,
             "questions": [_question("q1"), _question("q2", "multiple")]},
            {"_id": "sec-b", "title": "English", "order": 2,
             "questions": [_question("q3", "comprehension",
                                     {"_id": "p1", "title": "Passage", "passage": "Once upon a time"})]},
        ],
        "answers": answers or [],
        "currentSectionIndex": section_index,
        "currentQuestionIndex": question_index,
        "timeRemaining": time_remaining,
        "language": "en",
    }


def make_payload(**kwargs) -> AttemptPayload:
    return AttemptPayload.model_validate(make_payload_dict(**kwargs))


class FakeClock:
    """호출할 때마다 1초씩 증가하는 시계."""

    def __init__(self):
        self.now = datetime(2026, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.now += timedelta(seconds=1)
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def attempt(clock):
    s = ExamAttemptSession(clock=clock)
    s.initialize(make_payload())
    return s


@pytest.fixture
def open_attempt(clock):
    """섹션 간 이동이 허용된 시험."""
    s = ExamAttemptSession(clock=clock)
    s.initialize(make_payload(allow_section_navigation=True))
    return s
