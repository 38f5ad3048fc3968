"""Normalization of raw model output into Reports.

The model's JSON is untrusted input. It is parsed strictly, validated
against the grading contract, and reshaped into a ``Report`` whose
aggregates are recomputed from the per-question marks. Model-reported
totals and percentage are advisory only: a per-question mark can be checked
by a human, a single aggregate number cannot.
"""

import json
import logging
import threading
import time
import uuid
from typing import Any, Callable, List, Optional, Sequence, Tuple

from pydantic import ValidationError as PydanticValidationError

from edugrade.errors import MalformedResponse, SchemaViolation
from edugrade.models.report import (
    REQUIRED_RESPONSE_FIELDS,
    GradeItem,
    GradingResponse,
    Report,
    round_half_up,
)

logger = logging.getLogger(__name__)


def compute_aggregates(grades: Sequence[GradeItem]) -> Tuple[float, float, int]:
    """Return (total_score, max_score, percentage) derived from grades."""
    total_score = sum(g.marks_obtained for g in grades)
    max_score = sum(g.total_marks for g in grades)
    return total_score, max_score, compute_percentage(total_score, max_score)


def compute_percentage(total_score: float, max_score: float) -> int:
    if max_score <= 0:
        return 0
    return round_half_up(100 * total_score / max_score)


def _error_paths(error: PydanticValidationError) -> List[str]:
    """Dotted field paths from a pydantic error, e.g. 'grades.0.marksObtained'."""
    paths: List[str] = []
    for detail in error.errors():
        path = ".".join(str(part) for part in detail["loc"]) or "<root>"
        if path not in paths:
            paths.append(path)
    return paths


def _error_reason(error: PydanticValidationError) -> str:
    if all(detail["type"] == "missing" for detail in error.errors()):
        return "missing required field(s)"
    return "invalid field(s)"


def _epoch_ms() -> int:
    return int(time.time() * 1000)


class ReportNormalizer:
    """Turns raw response text into a Report.

    Args:
        clock: Returns the current time in epoch milliseconds
        id_factory: Returns a fresh UUID for each report
    """

    def __init__(
        self,
        clock: Callable[[], int] = _epoch_ms,
        id_factory: Callable[[], uuid.UUID] = uuid.uuid4,
    ):
        self._clock = clock
        self._id_factory = id_factory
        self._last_timestamp: Optional[int] = None
        self._lock = threading.Lock()

    def parse(self, raw_text: str) -> GradingResponse:
        """
        Parse and validate the model output against the grading contract.

        Raises:
            MalformedResponse: Text is not exactly one JSON object
            SchemaViolation: Required fields missing or invalid
        """
        text = (raw_text or "").strip()
        if not text:
            raise MalformedResponse("response is empty")

        try:
            data: Any = json.loads(text)
        except json.JSONDecodeError as e:
            raise MalformedResponse(str(e)) from e

        if not isinstance(data, dict):
            raise MalformedResponse(f"expected an object, got {type(data).__name__}")

        missing = [key for key in REQUIRED_RESPONSE_FIELDS if data.get(key) is None]
        if missing:
            raise SchemaViolation(missing)

        try:
            return GradingResponse.model_validate(data)
        except PydanticValidationError as e:
            raise SchemaViolation(_error_paths(e), _error_reason(e)) from e

    def normalize(self, raw_text: str) -> Report:
        """
        Build a Report from raw response text.

        Args:
            raw_text: Text returned by the inference service

        Returns:
            Report with recomputed aggregates and a fresh id/timestamp

        Raises:
            MalformedResponse: Text is not exactly one JSON object
            SchemaViolation: Required fields missing or invalid
        """
        response = self.parse(raw_text)
        total_score, max_score, percentage = compute_aggregates(response.grades)

        reported = (response.total_score, response.max_score, response.percentage)
        if reported != (total_score, max_score, percentage):
            logger.warning(json.dumps({
                "message": "Model-reported aggregates differ from recomputed values",
                "reported": {
                    "totalScore": response.total_score,
                    "maxScore": response.max_score,
                    "percentage": response.percentage,
                },
                "recomputed": {
                    "totalScore": total_score,
                    "maxScore": max_score,
                    "percentage": percentage,
                },
            }))

        return Report(
            id=self._id_factory(),
            timestamp=self._next_timestamp(),
            student_info=response.student_info,
            grades=tuple(response.grades),
            total_score=total_score,
            max_score=max_score,
            percentage=percentage,
            general_feedback=response.general_feedback,
        )

    def _next_timestamp(self) -> int:
        """Current time, forced strictly past the previous report's timestamp."""
        with self._lock:
            now = self._clock()
            if self._last_timestamp is not None and now <= self._last_timestamp:
                now = self._last_timestamp + 1
            self._last_timestamp = now
            return now
