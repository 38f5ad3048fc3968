"""Pydantic models for grading responses and reports.

The same models describe the output contract sent to Gemini (via
``GradingResponse.model_json_schema()``) and validate what comes back. A
``Report`` is the normalized, immutable record stored in history.

Field names are snake_case in Python and camelCase on the wire and in
persisted history.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Iterator, List, Optional, Tuple
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

# Performance band thresholds (fraction of marks obtained)
STRONG_THRESHOLD = 0.8
PARTIAL_THRESHOLD = 0.4


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero (12.5 -> 13)."""
    return int(Decimal(value).quantize(Decimal(1), rounding=ROUND_HALF_UP))


class ContractModel(BaseModel):
    """Base model with camelCase aliases and immutable instances."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )


def _text_or_empty(value: Any) -> Any:
    """Absent text becomes an empty string; numeric labels become text."""
    if value is None:
        return ""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return value


class StudentInfo(ContractModel):
    """Student details read from the answer sheets."""
    model_config = ConfigDict(json_schema_extra={"required": ["name", "subject"]})

    name: str = Field(default="", description="Student name as written on the sheet")
    roll_number: str = Field(default="", description="Roll or registration number")
    subject: str = Field(default="", description="Subject of the examination")
    class_name: str = Field(default="", alias="class", description="Class or grade")
    exam_name: str = Field(default="", description="Name of the examination")
    date: str = Field(default="", description="Examination date as written")

    @field_validator("*", mode="before")
    @classmethod
    def coerce_text(cls, v: Any) -> Any:
        return _text_or_empty(v)


class GradeItem(ContractModel):
    """Grading of a single question."""
    question_number: str = Field(description="Question label exactly as printed, e.g. 1, 2(a), Q3")
    student_answer: str = Field(default="", description="Student's answer transcribed verbatim")
    correct_answer: str = Field(
        default="",
        description="Syllabus-correct reference answer, independent of the student's answer"
    )
    marks_obtained: float = Field(ge=0, strict=True, allow_inf_nan=False, description="Marks awarded")
    total_marks: float = Field(ge=0, strict=True, allow_inf_nan=False, description="Marks available")
    feedback: str = Field(default="", description="Specific, actionable feedback")

    @field_validator("question_number", mode="before")
    @classmethod
    def coerce_label(cls, v: Any) -> Any:
        # A null label is a missing label, not an empty one
        if v is None:
            return v
        return _text_or_empty(v)

    @field_validator("student_answer", "correct_answer", "feedback", mode="before")
    @classmethod
    def coerce_text(cls, v: Any) -> Any:
        return _text_or_empty(v)

    @model_validator(mode="after")
    def check_marks_within_total(self) -> "GradeItem":
        if self.marks_obtained > self.total_marks:
            raise ValueError(
                f"marksObtained ({self.marks_obtained}) exceeds totalMarks ({self.total_marks})"
            )
        return self

    @property
    def performance(self) -> str:
        """Band for display: strong (>=80%), partial (>=40%) or weak."""
        if self.total_marks <= 0:
            return "weak"
        ratio = self.marks_obtained / self.total_marks
        if ratio >= STRONG_THRESHOLD:
            return "strong"
        if ratio >= PARTIAL_THRESHOLD:
            return "partial"
        return "weak"


class GradingResponse(ContractModel):
    """Output contract for the grading model.

    The aggregate fields are required so the model commits to them, but
    they are advisory: the normalizer recomputes them from ``grades``.
    """
    model_config = ConfigDict(
        json_schema_extra={
            "required": ["studentInfo", "grades", "totalScore", "maxScore", "percentage"]
        }
    )

    student_info: StudentInfo
    grades: List[GradeItem]
    total_score: float = Field(allow_inf_nan=False, description="Sum of marksObtained")
    max_score: float = Field(allow_inf_nan=False, description="Sum of totalMarks")
    percentage: float = Field(allow_inf_nan=False, description="totalScore as a percentage of maxScore")
    general_feedback: str = Field(default="", description="Overall feedback for the student")

    @field_validator("general_feedback", mode="before")
    @classmethod
    def coerce_text(cls, v: Any) -> Any:
        return _text_or_empty(v)


# Keys the model must always return, by wire name
REQUIRED_RESPONSE_FIELDS: Tuple[str, ...] = (
    "studentInfo", "grades", "totalScore", "maxScore", "percentage"
)


class Report(ContractModel):
    """Normalized, immutable result of one evaluation."""
    id: UUID
    timestamp: int = Field(description="Creation time in epoch milliseconds")
    student_info: StudentInfo
    grades: Tuple[GradeItem, ...]
    total_score: float
    max_score: float
    percentage: int
    general_feedback: str = ""

    @property
    def remaining_marks(self) -> float:
        return max(0.0, self.max_score - self.total_score)

    def to_json_dict(self) -> dict:
        """Wire/persisted form with camelCase keys."""
        return self.model_dump(mode="json", by_alias=True)


class HistoryLog(BaseModel):
    """Newest-first sequence of reports."""
    model_config = ConfigDict(frozen=True)

    reports: Tuple[Report, ...] = ()

    def __len__(self) -> int:
        return len(self.reports)

    def __iter__(self) -> Iterator[Report]:  # type: ignore[override]
        return iter(self.reports)

    def get(self, report_id: UUID) -> Optional[Report]:
        for report in self.reports:
            if report.id == report_id:
                return report
        return None

    @property
    def ids(self) -> List[UUID]:
        return [r.id for r in self.reports]

    @property
    def average_percentage(self) -> int:
        """Rounded mean percentage across the log (0 when empty)."""
        if not self.reports:
            return 0
        return round_half_up(sum(r.percentage for r in self.reports) / len(self.reports))
