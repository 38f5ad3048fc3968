"""
Grading request composition.

Builds the single multimodal request sent to Gemini for one evaluation:
1. A fixed instruction block (examiner persona and grading rules)
2. Page-labelled documents: question paper, answer key, student sheets
3. The output JSON schema, attached as a structured response constraint
"""

from typing import Any, Dict, List, Sequence

from edugrade.models.documents import (
    GROUP_ORDER,
    BinaryPart,
    DocumentGroup,
    EncodedDocument,
    InferenceRequest,
    RequestPart,
    TextPart,
)
from edugrade.models.report import GradingResponse

DEFAULT_MODEL = "gemini-3-flash-preview"

# Schema keywords the Gemini response_schema does not accept
_UNSUPPORTED_SCHEMA_KEYS = frozenset({"additionalProperties", "title", "default"})

GRADING_INSTRUCTION = """You are an expert academic examiner. Grade the student's answer sheets OBJECTIVELY against standard educational syllabi and, when provided, the answer key.

The documents that follow are labelled by page: "Question Paper - Page N:", "Answer Key - Page N:" and "Student Answer Sheet - Page N:".

### WHAT TO PRODUCE
* **studentInfo:** Read the student's name, roll number, subject, class, exam name and date from the sheets. Use an empty string for anything not written.
* **grades:** One entry per question, in the order the questions appear, with questionNumber exactly as printed, studentAnswer, correctAnswer, marksObtained, totalMarks and feedback.
* **totalScore, maxScore, percentage:** The raw score, the maximum possible score and the percentage.
* **generalFeedback:** A short overall assessment.

### NON-NEGOTIABLE RULES
1. **Verbatim Transcription:** studentAnswer must be the student's text exactly as written. Do not paraphrase, correct or summarize it.
2. **Independent Reference Answer:** correctAnswer must be the standard, textbook-correct answer derived from the question paper, answer key and syllabus ONLY. It must be identical no matter what the student wrote. Never adjust it to match, excuse or partially credit the student's response.
3. **Actionable Feedback:** Every graded question needs specific feedback explaining why marks were awarded or deducted and what the student should do to improve.
4. **JSON Only:** Return exactly one JSON object matching the response schema. No markdown fences, no preamble, no trailing commentary."""


def page_label(group: DocumentGroup, page: int) -> str:
    """Marker preceding each document, e.g. 'Question Paper - Page 1:'."""
    return f"{group.label} - Page {page}:"


def _inline_refs(schema: Any, defs: Dict[str, Any]) -> Any:
    """Replace every {"$ref": "#/$defs/Name"} with the referenced schema."""
    if isinstance(schema, dict):
        ref = schema.get("$ref")
        if isinstance(ref, str) and ref.startswith("#/$defs/"):
            return _inline_refs(defs[ref.split("/")[-1]], defs)
        return {
            key: _inline_refs(value, defs)
            for key, value in schema.items()
            if key != "$defs"
        }
    if isinstance(schema, list):
        return [_inline_refs(item, defs) for item in schema]
    return schema


def _remove_unsupported_keys(schema: Any) -> Any:
    """
    Recursively clean JSON schema for Gemini API compatibility.

    Gemini's response_schema doesn't support additionalProperties, and the
    pydantic-generated title/default keys only add noise. Property names are
    left alone: a field may legitimately be called "title" or "default".
    """
    if isinstance(schema, list):
        return [_remove_unsupported_keys(item) for item in schema]
    if not isinstance(schema, dict):
        return schema

    cleaned: Dict[str, Any] = {}
    for key, value in schema.items():
        if key in _UNSUPPORTED_SCHEMA_KEYS:
            continue
        if key == "properties" and isinstance(value, dict):
            cleaned[key] = {
                name: _remove_unsupported_keys(prop) for name, prop in value.items()
            }
        else:
            cleaned[key] = _remove_unsupported_keys(value)
    return cleaned


def build_response_schema() -> Dict[str, Any]:
    """JSON Schema for the grading response, derived from the contract models."""
    raw_schema = GradingResponse.model_json_schema(by_alias=True)
    inlined = _inline_refs(raw_schema, raw_schema.get("$defs", {}))
    return _remove_unsupported_keys(inlined)


class RequestComposer:
    """Composes grading requests for a fixed model."""

    def __init__(self, model: str = DEFAULT_MODEL, instruction: str = GRADING_INSTRUCTION):
        self.model = model
        self.instruction = instruction
        self.response_schema = build_response_schema()

    def compose(
        self,
        question_paper: Sequence[EncodedDocument],
        answer_key: Sequence[EncodedDocument],
        student_sheets: Sequence[EncodedDocument],
    ) -> InferenceRequest:
        """
        Build the inference request for one evaluation.

        Args:
            question_paper: Encoded question paper pages in upload order
            answer_key: Encoded answer key pages (may be empty)
            student_sheets: Encoded student answer sheet pages in upload order

        Returns:
            InferenceRequest with instruction, labelled pages and schema
        """
        groups = {
            DocumentGroup.question_paper: question_paper,
            DocumentGroup.answer_key: answer_key,
            DocumentGroup.student_sheets: student_sheets,
        }

        parts: List[RequestPart] = [TextPart(self.instruction)]
        for group in GROUP_ORDER:
            for page, document in enumerate(groups[group], start=1):
                parts.append(TextPart(page_label(group, page)))
                parts.append(BinaryPart(document.mime_type, document.base64_payload))

        return InferenceRequest(
            model=self.model,
            parts=tuple(parts),
            # Copy so callers can't mutate the composer's schema through a request
            response_schema=_remove_unsupported_keys(self.response_schema),
        )

    def compose_groups(
        self, groups: Dict[DocumentGroup, Sequence[EncodedDocument]]
    ) -> InferenceRequest:
        return self.compose(
            groups.get(DocumentGroup.question_paper, []),
            groups.get(DocumentGroup.answer_key, []),
            groups.get(DocumentGroup.student_sheets, []),
        )

