import pytest

from conftest import make_payload
from exam_prep_cbt.models.session_state import QuestionStatus
from exam_prep_cbt.services.attempt_session import ExamAttemptSession, InvalidAttemptError


class TestInitialize:
    def test_empty_session_before_initialize(self):
        s = ExamAttemptSession()
        assert not s.is_initialized
        assert s.current_question() is None
        assert s.current_section() is None
        assert s.all_answers() == []
        assert s.time_remaining == 0

    def test_current_question_is_visited(self, attempt):
        assert attempt.attempt_id == "att-1"
        assert attempt.current_question().id == "q1"
        assert attempt.visited_questions == {"q1"}
        assert attempt.question_status("q1") == QuestionStatus.VISITED
        assert attempt.start_time is not None

    def test_rehydrates_prior_answers(self, clock):
        prior = [
            {"questionId": "q1", "selectedOptions": ["q1_b"], "timeTaken": 12,
             "markedForReview": True, "visitedAt": "2025-12-31T10:00:00Z"},
            {"questionId": "q2", "selectedOptions": [], "markedForReview": False},
        ]
        s = ExamAttemptSession(clock=clock)
        s.initialize(make_payload(answers=prior, question_index=1, time_remaining=120))

        assert s.marked_questions == {"q1"}
        # q2는 visitedAt이 없었지만 커서 위치이므로 방문 처리된다
        assert s.visited_questions == {"q1", "q2"}
        assert s.question_status("q1") == QuestionStatus.MARKED_ANSWERED
        assert s.get_answer("q1").time_taken == 12
        assert s.time_remaining == 120
        assert (s.current_section_index, s.current_question_index) == (0, 1)

    def test_prior_visit_timestamp_is_kept(self, clock):
        prior = [{"questionId": "q1", "visitedAt": "2025-12-31T10:00:00Z"}]
        s = ExamAttemptSession(clock=clock)
        s.initialize(make_payload(answers=prior))
        assert s.get_answer("q1").visited_at.year == 2025

    def test_reinitialize_replaces_state(self, attempt):
        attempt.set_answer("q1", ["q1_a"])
        attempt.toggle_mark_for_review("q1")
        attempt.initialize(make_payload(time_remaining=50))
        assert attempt.marked_questions == frozenset()
        assert attempt.get_answer("q1").selected_options == []
        assert attempt.time_remaining == 50

    def test_empty_sections_rejected(self, clock):
        payload = make_payload()
        payload.sections = []
        s = ExamAttemptSession(clock=clock)
        with pytest.raises(InvalidAttemptError, match="섹션이 없는"):
            s.initialize(payload)
        assert not s.is_initialized

    def test_section_without_questions_rejected(self):
        payload = make_payload()
        payload.sections[1].questions = []
        with pytest.raises(InvalidAttemptError, match="문제가 없습니다"):
            ExamAttemptSession().initialize(payload)

    @pytest.mark.parametrize("section_index,question_index", [(2, 0), (1, 1), (-1, 0), (0, 5)])
    def test_cursor_out_of_range_rejected(self, section_index, question_index):
        payload = make_payload(section_index=section_index, question_index=question_index)
        with pytest.raises(InvalidAttemptError, match="범위를 벗어났습니다"):
            ExamAttemptSession().initialize(payload)

    def test_failed_initialize_keeps_previous_state(self, attempt):
        attempt.set_answer("q1", ["q1_a"])
        with pytest.raises(InvalidAttemptError):
            attempt.initialize(make_payload(section_index=9))
        assert attempt.attempt_id == "att-1"
        assert attempt.get_answer("q1").selected_options == ["q1_a"]

    def test_negative_time_rejected(self):
        with pytest.raises(InvalidAttemptError, match="음수"):
            ExamAttemptSession().initialize(make_payload(time_remaining=-1))


class TestAnswers:
    def test_set_answer_creates_record(self, attempt):
        answer = attempt.set_answer("q2", ["q2_a", "q2_c"])
        assert answer.selected_options == ["q2_a", "q2_c"]
        assert answer.answered_at is not None
        assert answer.visited_at is not None
        assert attempt.question_status("q2") == QuestionStatus.ANSWERED

    def test_set_answer_preserves_other_fields(self, attempt):
        attempt.add_time_spent("q1", 30)
        attempt.toggle_mark_for_review("q1")
        visited_at = attempt.get_answer("q1").visited_at

        attempt.set_answer("q1", ["q1_d"])
        answer = attempt.get_answer("q1")
        assert answer.time_taken == 30
        assert answer.marked_for_review is True
        assert answer.visited_at == visited_at

    def test_set_answer_is_idempotent_except_timestamp(self, attempt):
        first = attempt.set_answer("q1", ["q1_b"])
        attempt.set_answer("q1", ["q1_b"])
        second = attempt.get_answer("q1")

        assert len(attempt.all_answers()) == 1
        assert second.selected_options == first.selected_options
        assert second.answered_at > first.answered_at
        assert second.model_dump(exclude={"answered_at"}) == first.model_dump(exclude={"answered_at"})

    def test_last_write_wins(self, attempt):
        attempt.set_answer("q2", ["q2_a"])
        attempt.set_answer("q2", ["q2_b", "q2_a"])
        assert attempt.get_answer("q2").selected_options == ["q2_b", "q2_a"]

    def test_clearing_selection(self, attempt):
        attempt.set_answer("q1", ["q1_a"])
        attempt.set_answer("q1", [])
        assert attempt.question_status("q1") == QuestionStatus.VISITED

    def test_time_spent_accumulates(self, attempt):
        assert attempt.add_time_spent("q1", 5) is True
        assert attempt.add_time_spent("q1", 7) is True
        assert attempt.get_answer("q1").time_taken == 12

    def test_time_spent_ignored_for_untouched_question(self, attempt):
        assert attempt.add_time_spent("q3", 5) is False
        assert attempt.get_answer("q3") is None

    def test_negative_time_spent_rejected(self, attempt):
        with pytest.raises(ValueError):
            attempt.add_time_spent("q1", -1)

    def test_returned_answer_is_detached(self, attempt):
        answer = attempt.set_answer("q1", ["q1_a"])
        answer.selected_options.append("q1_b")
        answer.visited_at = None
        assert attempt.get_answer("q1").selected_options == ["q1_a"]
        assert "q1" in attempt.visited_questions

        visited = attempt.mark_as_visited("q2")
        visited.visited_at = None
        assert "q2" in attempt.visited_questions

    def test_all_answers_is_snapshot(self, attempt):
        attempt.set_answer("q1", ["q1_a"])
        snapshot = attempt.all_answers()
        snapshot[0].selected_options.append("q1_b")
        assert attempt.get_answer("q1").selected_options == ["q1_a"]


class TestVisitAndMark:
    def test_visit_timestamp_set_once(self, attempt):
        first = attempt.mark_as_visited("q2").visited_at
        attempt.mark_as_visited("q2")
        attempt.navigate_to(0, 1)
        attempt.set_answer("q2", ["q2_a"])
        assert attempt.get_answer("q2").visited_at == first

    def test_mark_toggle_is_involution(self, attempt):
        attempt.set_answer("q1", ["q1_a"])
        assert attempt.toggle_mark_for_review("q1") is True
        assert attempt.get_answer("q1").marked_for_review is True
        assert attempt.toggle_mark_for_review("q1") is False
        assert attempt.get_answer("q1").marked_for_review is False
        assert "q1" not in attempt.marked_questions

    def test_mark_without_answer_record(self, attempt):
        attempt.toggle_mark_for_review("q3")
        assert attempt.get_answer("q3") is None
        assert attempt.question_status("q3") == QuestionStatus.MARKED
        # 이후 방문으로 생성된 기록은 검토 표시를 이어받는다
        attempt.mark_as_visited("q3")
        assert attempt.get_answer("q3").marked_for_review is True

    def test_status_precedence(self, attempt):
        attempt.set_answer("q1", ["q1_a"])
        attempt.toggle_mark_for_review("q1")
        assert attempt.question_status("q1") == QuestionStatus.MARKED_ANSWERED
        attempt.toggle_mark_for_review("q1")
        assert attempt.question_status("q1") == QuestionStatus.ANSWERED
        attempt.toggle_mark_for_review("q1")
        attempt.set_answer("q1", [])
        assert attempt.question_status("q1") == QuestionStatus.MARKED

    def test_unknown_question_is_not_visited(self, attempt):
        assert attempt.question_status("q3") == QuestionStatus.NOT_VISITED


class TestNavigation:
    def test_navigate_marks_target_visited(self, attempt):
        assert attempt.navigate_to(1, 0) is True
        assert attempt.current_question().id == "q3"
        assert attempt.current_section().id == "sec-b"
        assert "q3" in attempt.visited_questions

    @pytest.mark.parametrize("target", [(2, 0), (0, 2), (-1, 0), (0, -1), (1, 1)])
    def test_navigate_out_of_range_is_noop(self, attempt, target):
        assert attempt.navigate_to(*target) is False
        assert (attempt.current_section_index, attempt.current_question_index) == (0, 0)
        assert attempt.visited_questions == {"q1"}

    def test_next_stays_in_section_when_gated(self, attempt):
        assert attempt.next_question() is True
        assert (attempt.current_section_index, attempt.current_question_index) == (0, 1)
        assert attempt.next_question() is False
        assert (attempt.current_section_index, attempt.current_question_index) == (0, 1)
        assert "q3" not in attempt.visited_questions

    def test_prev_stays_in_section_when_gated(self, attempt):
        attempt.navigate_to(1, 0)
        assert attempt.prev_question() is False
        assert (attempt.current_section_index, attempt.current_question_index) == (1, 0)

    def test_next_crosses_section_when_allowed(self, open_attempt):
        open_attempt.next_question()
        assert open_attempt.next_question() is True
        assert (open_attempt.current_section_index, open_attempt.current_question_index) == (1, 0)
        assert open_attempt.next_question() is False

    def test_prev_lands_on_last_question_of_previous_section(self, open_attempt):
        open_attempt.navigate_to(1, 0)
        assert open_attempt.prev_question() is True
        assert (open_attempt.current_section_index, open_attempt.current_question_index) == (0, 1)
        open_attempt.prev_question()
        assert open_attempt.prev_question() is False
        assert (open_attempt.current_section_index, open_attempt.current_question_index) == (0, 0)


class TestTimerAndLanguage:
    def test_timer_floors_at_zero(self):
        s = ExamAttemptSession()
        s.initialize(make_payload(time_remaining=600))
        for _ in range(650):
            s.decrement_timer()
        assert s.time_remaining == 0
        assert s.is_time_up

    def test_decrement_returns_remaining(self, attempt):
        assert attempt.decrement_timer() == 599

    def test_set_language(self, attempt):
        attempt.set_language("hi")
        assert attempt.language == "hi"
        assert attempt.current_question().text(attempt.language) == "प्रश्न q1?"

    def test_unknown_language_rejected(self, attempt):
        with pytest.raises(ValueError):
            attempt.set_language("fr")
        assert attempt.language == "en"


class TestSectionStats:
    def test_counts_overlap_for_answered_and_marked(self, attempt):
        attempt.set_answer("q1", ["q1_a"])
        attempt.toggle_mark_for_review("q1")
        stats = attempt.section_stats("sec-a")
        assert stats.total == 2
        assert stats.answered == 1
        assert stats.marked == 1
        assert stats.not_visited == 1

    def test_untouched_section(self, attempt):
        stats = attempt.section_stats("sec-b")
        assert (stats.total, stats.answered, stats.marked, stats.not_visited) == (1, 0, 0, 1)

    def test_unknown_section(self, attempt):
        stats = attempt.section_stats("nope")
        assert (stats.total, stats.answered, stats.marked, stats.not_visited) == (0, 0, 0, 0)

    def test_serialized_with_camel_case(self, attempt):
        assert attempt.section_stats("sec-a").model_dump(by_alias=True) == {
            "total": 2, "answered": 0, "marked": 0, "notVisited": 1,
        }


class TestReset:
    def test_reset_clears_everything(self, attempt):
        attempt.set_answer("q1", ["q1_a"])
        attempt.toggle_mark_for_review("q2")
        attempt.is_submitting = True
        attempt.reset()

        assert not attempt.is_initialized
        assert attempt.exam is None
        assert attempt.sections == []
        assert attempt.all_answers() == []
        assert attempt.marked_questions == frozenset()
        assert attempt.visited_questions == frozenset()
        assert attempt.time_remaining == 0
        assert attempt.is_submitting is False

    def test_can_initialize_after_reset(self, attempt):
        attempt.reset()
        attempt.initialize(make_payload())
        assert attempt.current_question().id == "q1"


def test_example_scenario():
    s = ExamAttemptSession()
    s.initialize(make_payload(allow_section_navigation=False, time_remaining=600))

    s.next_question()
    assert (s.current_section_index, s.current_question_index) == (0, 1)
    assert "q2" in s.visited_questions

    s.next_question()
    assert (s.current_section_index, s.current_question_index) == (0, 1)

    s.set_answer("q2", ["q2_b"])
    assert s.question_status("q2") == QuestionStatus.ANSWERED
    s.toggle_mark_for_review("q2")
    assert s.question_status("q2") == QuestionStatus.MARKED_ANSWERED

    for _ in range(650):
        s.decrement_timer()
    assert s.time_remaining == 0
