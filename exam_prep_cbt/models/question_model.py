"""
models/question_model.py

시험 문제/섹션/시험 정보 모델 (세션 동안 읽기 전용).
Pydantic v2 적용. 서버 payload의 camelCase 키(_id, allowSectionNavigation 등)와
snake_case 필드명을 모두 받는다.
"""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """서버와 주고받는 모델의 공통 설정 (camelCase alias)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class QuestionType(str, Enum):
    SINGLE = "single"
    MULTIPLE = "multiple"
    COMPREHENSION = "comprehension"


class QuestionOption(CamelModel):
    id: str = Field(..., min_length=1, description="보기 식별자 (답안에는 이 값이 저장된다)")
    text: str = Field(..., description="보기 내용 (영어)")
    text_hi: Optional[str] = Field(None, description="보기 내용 (힌디어)")

    def label(self, language: str = "en") -> str:
        if language == "hi" and self.text_hi:
            return self.text_hi
        return self.text


class ComprehensionPassage(CamelModel):
    """
    여러 문제가 함께 참조하는 독해 지문.
    어느 한 문제에 속하지 않는 공유 데이터이므로 세션은 절대 수정하지 않는다.
    """

    id: Optional[str] = Field(None, alias="_id")
    title: str = ""
    title_hi: Optional[str] = None
    passage: str = Field(..., description="지문 본문 (영어)")
    passage_hi: Optional[str] = None
    image_url: Optional[str] = None


class Question(CamelModel):
    """
    CBT 문제 모델

    보기(options)는 최소 2개, 보기 id는 문제 안에서 고유해야 한다.
    """

    id: str = Field(..., alias="_id", min_length=1, description="문제 식별자")
    question_type: QuestionType = Field(
        QuestionType.SINGLE,
        description="single: 단일 선택, multiple: 복수 선택, comprehension: 지문 연계",
    )
    question: str = Field(..., min_length=1, description="발문 (영어)")
    question_hindi: Optional[str] = Field(None, description="발문 (힌디어)")
    image_url: Optional[str] = None
    options: List[QuestionOption] = Field(..., description="보기 리스트")
    comprehension_passage: Optional[ComprehensionPassage] = None

    @field_validator("options")
    @classmethod
    def validate_options(cls, v: List[QuestionOption]) -> List[QuestionOption]:
        """
        검증 로직 1: 보기는 최소 2개 이상, id 중복 불가.
        """
        if len(v) < 2:
            raise ValueError("보기(options)는 최소 2개 이상의 항목이 필요합니다.")
        ids = [o.id for o in v]
        if len(set(ids)) != len(ids):
            raise ValueError(f"보기 id가 중복되었습니다: {ids}")
        return v

    @model_validator(mode="after")
    def validate_passage(self) -> "Question":
        """
        검증 로직 2: 지문 연계 문제는 반드시 지문을 참조해야 한다.
        """
        if self.question_type == QuestionType.COMPREHENSION and self.comprehension_passage is None:
            raise ValueError(f"지문 연계 문제({self.id})에 comprehensionPassage가 없습니다.")
        return self

    def option_ids(self) -> List[str]:
        return [o.id for o in self.options]

    def text(self, language: str = "en") -> str:
        if language == "hi" and self.question_hindi:
            return self.question_hindi
        return self.question


class Section(CamelModel):
    id: str = Field(..., alias="_id", min_length=1)
    title: str = ""
    title_hi: Optional[str] = None
    order: int = 0
    questions: List[Question] = Field(default_factory=list)
    instructions: Optional[str] = None
    instructions_hi: Optional[str] = None


class ExamInfo(CamelModel):
    """
    시험 설정 정보. 세션 시작 후에는 변경되지 않는다.

    Attributes:
        duration:                 시험 시간 (분, 서버 저장 단위).
        allow_section_navigation: False이면 이전/다음 이동이 현재 섹션 안에서만 가능.
        shuffle_questions:        표시용 플래그. 섞기는 서버에서 이미 적용됨.
        shuffle_options:          표시용 플래그. 섞기는 서버에서 이미 적용됨.
    """

    id: str = Field(..., alias="_id", min_length=1)
    title: str = ""
    title_hi: Optional[str] = None
    duration: int = Field(0, ge=0, description="시험 시간 (분)")
    total_questions: int = Field(0, ge=0)
    total_marks: float = 0
    default_positive_marks: float = 1
    default_negative_marks: float = 0
    allow_section_navigation: bool = False
    shuffle_questions: bool = False
    shuffle_options: bool = False

    @property
    def duration_seconds(self) -> int:
        return self.duration * 60
