"""
services/timer.py

남은 시험 시간 표시용 헬퍼.
타이머 감소 자체는 ExamAttemptSession.decrement_timer()가 담당한다.
"""

from config import TIMER_WARNING_SECONDS


def format_remaining(seconds: int) -> str:
    """
    남은 시간을 HH:MM:SS 문자열로 변환.

    >>> format_remaining(3725)
    '01:02:05'
    """
    seconds = max(0, int(seconds))
    hours = seconds // 3600
    minutes = (seconds % 3600) // 60
    secs = seconds % 60
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


def is_warning(seconds: int, threshold: int = TIMER_WARNING_SECONDS) -> bool:
    """남은 시간이 threshold 이하이면 경고 (빨간색) 표시."""
    return seconds <= threshold
