"""
api/routes.py — FastAPI 엔드포인트

브라우저 세션마다 ExamAttemptSession 하나를 구동한다.
같은 세션의 요청은 세션별 잠금으로 하나씩 처리하고,
원격 서버 호출이 섞인 연산은 asyncio.to_thread로 이벤트 루프 밖에서 실행한다.
"""

import asyncio
import logging

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, Field

import api.session as session
from exam_prep_cbt.models.question_model import Question, QuestionType
from exam_prep_cbt.models.session_state import AttemptPayload, Language
from exam_prep_cbt.services.attempt_client import AttemptAPIError
from exam_prep_cbt.services.attempt_session import ExamAttemptSession, InvalidAttemptError
from exam_prep_cbt.services.attempt_sync import AttemptAlreadySubmittedError, AttemptSync
from exam_prep_cbt.services.timer import format_remaining, is_warning

router = APIRouter()

logger = logging.getLogger(__name__)

# ── Pydantic request bodies ──────────────────────────────────────────────────

class StartAttemptBody(BaseModel):
    language: Language = "en"

class SaveAnswerBody(BaseModel):
    question_id: str
    selected_options: list[str] = []
    time_taken: int = Field(default=0, ge=0)

class QuestionBody(BaseModel):
    question_id: str

class TimeSpentBody(BaseModel):
    question_id: str
    seconds: int = Field(..., ge=0)

class NavigateBody(BaseModel):
    section_index: int
    question_index: int

class LanguageBody(BaseModel):
    language: Language


# ── 헬퍼 ─────────────────────────────────────────────────────────────────────

def _session_lock(request: Request) -> asyncio.Lock:
    lock = session.get_lock(request.state.session_id)
    if lock is None:
        raise HTTPException(status_code=404, detail="세션이 없습니다.")
    return lock


def _session_state(request: Request) -> tuple[ExamAttemptSession, AttemptSync]:
    sid = request.state.session_id
    attempt = session.get_attempt(sid)
    sync = session.get_sync(sid)
    if attempt is None or sync is None:
        raise HTTPException(status_code=404, detail="세션이 없습니다.")
    return attempt, sync


def _active_attempt(request: Request) -> tuple[ExamAttemptSession, AttemptSync]:
    attempt, sync = _session_state(request)
    if not attempt.is_initialized:
        raise HTTPException(status_code=404, detail="진행 중인 시험이 없습니다.")
    if sync.submitted:
        raise HTTPException(status_code=400, detail="이미 제출된 시험입니다.")
    return attempt, sync


def _require_question(attempt: ExamAttemptSession, question_id: str) -> Question:
    question = attempt.find_question(question_id)
    if question is None:
        raise HTTPException(status_code=404, detail=f"문제를 찾을 수 없습니다: {question_id}")
    return question


def _state_to_dict(attempt: ExamAttemptSession, sync: AttemptSync) -> dict:
    exam = attempt.exam
    return {
        "attempt_id": attempt.attempt_id,
        "exam_title": exam.title if exam else "",
        "exam_title_hi": exam.title_hi if exam else None,
        "allow_section_navigation": exam.allow_section_navigation if exam else False,
        "current_section_index": attempt.current_section_index,
        "current_question_index": attempt.current_question_index,
        "time_remaining": attempt.time_remaining,
        "time_display": format_remaining(attempt.time_remaining),
        "time_warning": is_warning(attempt.time_remaining),
        "language": attempt.language,
        "is_saving": attempt.is_saving,
        "is_submitting": attempt.is_submitting,
        "error": attempt.error,
        "submitted": sync.submitted,
        "sections": [
            {
                "id": s.id,
                "title": s.title_hi if attempt.language == "hi" and s.title_hi else s.title,
                "stats": attempt.section_stats(s.id).model_dump(by_alias=True),
                "questions": [
                    {"id": q.id, "status": attempt.question_status(q.id).value}
                    for q in s.questions
                ],
            }
            for s in attempt.sections
        ],
    }


def _cursor(attempt: ExamAttemptSession, moved: bool) -> dict:
    return {
        "moved": moved,
        "section_index": attempt.current_section_index,
        "question_index": attempt.current_question_index,
    }


# ── 응시 시작 ────────────────────────────────────────────────────────────────

@router.post("/api/attempt/initialize")
async def initialize_attempt(payload: AttemptPayload, request: Request):
    async with _session_lock(request):
        attempt, sync = _session_state(request)
        try:
            attempt.initialize(payload)
        except InvalidAttemptError as e:
            raise HTTPException(status_code=422, detail=str(e))
        sync.reset()
        return {"ok": True, **_state_to_dict(attempt, sync)}


@router.post("/api/attempt/start/{exam_id}")
async def start_attempt(exam_id: str, body: StartAttemptBody, request: Request):
    async with _session_lock(request):
        attempt, sync = _session_state(request)
        if sync.client is None:
            raise HTTPException(status_code=400, detail="원격 시험 서버가 설정되지 않았습니다.")

        attempt.is_loading = True
        try:
            payload = await asyncio.to_thread(sync.client.start_attempt, exam_id, body.language)
            attempt.initialize(payload)
        except AttemptAPIError as e:
            attempt.is_loading = False
            raise HTTPException(status_code=502, detail=e.message)
        except ValueError as e:
            # InvalidAttemptError, pydantic ValidationError 포함
            attempt.is_loading = False
            logger.error(f"응시 데이터 오류 exam={exam_id}: {e}")
            raise HTTPException(status_code=422, detail=str(e))
        sync.reset()
        return {"ok": True, **_state_to_dict(attempt, sync)}


# ── 조회 ─────────────────────────────────────────────────────────────────────

@router.get("/api/attempt/state")
async def get_attempt_state(request: Request):
    async with _session_lock(request):
        attempt, sync = _session_state(request)
        if not attempt.is_initialized:
            raise HTTPException(status_code=404, detail="진행 중인 시험이 없습니다.")
        return _state_to_dict(attempt, sync)


@router.get("/api/attempt/question")
async def get_current_question(request: Request):
    async with _session_lock(request):
        attempt, _ = _session_state(request)
        question = attempt.current_question()
        section = attempt.current_section()
        if question is None or section is None:
            raise HTTPException(status_code=404, detail="문제를 찾을 수 없습니다.")

        answer = attempt.get_answer(question.id)
        return {
            "section": {
                "id": section.id,
                "title": section.title,
                "title_hi": section.title_hi,
                "instructions": section.instructions,
                "instructions_hi": section.instructions_hi,
            },
            "question": question.model_dump(mode="json", by_alias=True),
            "section_index": attempt.current_section_index,
            "question_index": attempt.current_question_index,
            "total_in_section": len(section.questions),
            "selected_options": answer.selected_options if answer else [],
            "status": attempt.question_status(question.id).value,
        }


@router.get("/api/attempt/sections/{section_id}/stats")
async def get_section_stats(section_id: str, request: Request):
    async with _session_lock(request):
        attempt, _ = _session_state(request)
        return attempt.section_stats(section_id).model_dump(by_alias=True)


@router.get("/api/attempt/answers")
async def get_all_answers(request: Request):
    async with _session_lock(request):
        attempt, _ = _session_state(request)
        return {"answers": [a.model_dump(mode="json", by_alias=True) for a in attempt.all_answers()]}


# ── 답안 / 표시 ──────────────────────────────────────────────────────────────

@router.put("/api/attempt/answer")
async def save_answer(body: SaveAnswerBody, request: Request):
    async with _session_lock(request):
        attempt, sync = _active_attempt(request)
        question = _require_question(attempt, body.question_id)
        unknown = set(body.selected_options) - set(question.option_ids())
        if unknown:
            raise HTTPException(status_code=422, detail=f"존재하지 않는 보기입니다: {sorted(unknown)}")
        if question.question_type == QuestionType.SINGLE and len(body.selected_options) > 1:
            raise HTTPException(status_code=422, detail="단일 선택 문제는 보기를 하나만 고를 수 있습니다.")

        await asyncio.to_thread(sync.save_answer, body.question_id, body.selected_options, body.time_taken)
        return {
            "ok": True,
            "status": attempt.question_status(body.question_id).value,
            "error": attempt.error,
        }


@router.post("/api/attempt/mark")
async def toggle_mark(body: QuestionBody, request: Request):
    async with _session_lock(request):
        attempt, sync = _active_attempt(request)
        _require_question(attempt, body.question_id)
        marked = await asyncio.to_thread(sync.toggle_mark, body.question_id)
        return {
            "ok": True,
            "marked_for_review": marked,
            "status": attempt.question_status(body.question_id).value,
        }


@router.post("/api/attempt/visit")
async def mark_visited(body: QuestionBody, request: Request):
    async with _session_lock(request):
        attempt, _ = _active_attempt(request)
        _require_question(attempt, body.question_id)
        attempt.mark_as_visited(body.question_id)
        return {"ok": True, "status": attempt.question_status(body.question_id).value}


@router.post("/api/attempt/time-spent")
async def add_time_spent(body: TimeSpentBody, request: Request):
    async with _session_lock(request):
        attempt, _ = _active_attempt(request)
        _require_question(attempt, body.question_id)
        recorded = attempt.add_time_spent(body.question_id, body.seconds)
        return {"ok": True, "recorded": recorded}


# ── 이동 ─────────────────────────────────────────────────────────────────────

@router.post("/api/attempt/navigate")
async def navigate(body: NavigateBody, request: Request):
    async with _session_lock(request):
        attempt, _ = _active_attempt(request)
        moved = attempt.navigate_to(body.section_index, body.question_index)
        return _cursor(attempt, moved)


@router.post("/api/attempt/next")
async def next_question(request: Request):
    async with _session_lock(request):
        attempt, _ = _active_attempt(request)
        return _cursor(attempt, attempt.next_question())


@router.post("/api/attempt/prev")
async def prev_question(request: Request):
    async with _session_lock(request):
        attempt, _ = _active_attempt(request)
        return _cursor(attempt, attempt.prev_question())


# ── 타이머 / 언어 ────────────────────────────────────────────────────────────

@router.post("/api/attempt/tick")
async def tick(request: Request):
    async with _session_lock(request):
        attempt, sync = _session_state(request)
        if not attempt.is_initialized:
            raise HTTPException(status_code=404, detail="진행 중인 시험이 없습니다.")
        # heartbeat/자동 제출이 원격 호출을 할 수 있음
        result = await asyncio.to_thread(sync.tick)
        return {
            "time_remaining": result.time_remaining,
            "time_display": format_remaining(result.time_remaining),
            "time_warning": is_warning(result.time_remaining),
            "submitted": result.submitted,
            "auto_submitted": result.auto_submitted,
        }


@router.put("/api/attempt/language")
async def set_language(body: LanguageBody, request: Request):
    async with _session_lock(request):
        attempt, _ = _session_state(request)
        attempt.set_language(body.language)
        return {"ok": True, "language": attempt.language}


# ── 제출 / 초기화 ────────────────────────────────────────────────────────────

@router.post("/api/attempt/submit")
async def submit_attempt(request: Request):
    async with _session_lock(request):
        attempt, sync = _session_state(request)
        if not attempt.is_initialized:
            raise HTTPException(status_code=404, detail="진행 중인 시험이 없습니다.")
        try:
            result = await asyncio.to_thread(sync.submit)
        except AttemptAlreadySubmittedError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except AttemptAPIError as e:
            raise HTTPException(status_code=502, detail=e.message)
        return {"ok": True, "result": result}


@router.post("/api/reset")
async def reset_session(request: Request):
    async with _session_lock(request):
        session.reset(request.state.session_id)
        return {"ok": True}
