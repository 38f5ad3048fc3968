"""Document and inference request types.

These are the internal values that flow from upload through encoding to the
composed inference request. They are plain frozen dataclasses: nothing here
is parsed from untrusted JSON.
"""

import base64
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Tuple, Union


class DocumentGroup(str, Enum):
    """The three fixed roles a document can be uploaded under."""
    question_paper = "question_paper"
    answer_key = "answer_key"
    student_sheets = "student_sheets"

    @property
    def label(self) -> str:
        """Label used in the page markers of the inference request."""
        return GROUP_LABELS[self]

    @property
    def required(self) -> bool:
        return self is not DocumentGroup.answer_key


GROUP_LABELS: Dict[DocumentGroup, str] = {
    DocumentGroup.question_paper: "Question Paper",
    DocumentGroup.answer_key: "Answer Key",
    DocumentGroup.student_sheets: "Student Answer Sheet",
}

# Order in which groups appear in a request
GROUP_ORDER: Tuple[DocumentGroup, ...] = (
    DocumentGroup.question_paper,
    DocumentGroup.answer_key,
    DocumentGroup.student_sheets,
)


@dataclass(frozen=True)
class UploadedDocument:
    """A document as selected by the user.

    ``mime_type`` is the type detected from the content, not whatever the
    client claimed. Use ``edugrade.services.document_encoder.load_document``
    or ``read_document`` to build one with detection and filename cleanup.
    """

    raw_bytes: bytes = field(repr=False)
    mime_type: str
    display_name: str

    @property
    def byte_size(self) -> int:
        return len(self.raw_bytes)


@dataclass(frozen=True)
class EncodedDocument:
    """Transport-safe form of an UploadedDocument."""

    mime_type: str
    base64_payload: str = field(repr=False)
    display_name: str = ""

    def decode(self) -> bytes:
        return base64.b64decode(self.base64_payload)


@dataclass(frozen=True)
class TextPart:
    text: str


@dataclass(frozen=True)
class BinaryPart:
    mime_type: str
    base64_payload: str = field(repr=False)


RequestPart = Union[TextPart, BinaryPart]


@dataclass(frozen=True)
class InferenceRequest:
    """A fully composed grading request.

    Attributes:
        model: Gemini model identifier
        parts: Ordered prompt parts (instruction, page labels, payloads)
        response_schema: JSON Schema the response must conform to, passed to
            the API as a structured parameter rather than prompt text
    """

    model: str
    parts: Tuple[RequestPart, ...]
    response_schema: Dict[str, Any]

    @property
    def text_parts(self) -> Tuple[str, ...]:
        return tuple(p.text for p in self.parts if isinstance(p, TextPart))
