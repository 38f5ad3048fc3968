"""
Evaluation API endpoints.

Accepts the three document groups as multipart uploads, runs one evaluation
and returns the resulting report.
"""

from typing import Any, Dict, List, Optional, Sequence

from fastapi import APIRouter, Depends, File, Request, Response, UploadFile, status
from fastapi.responses import JSONResponse

from edugrade.errors import (
    DocumentRejected,
    EvaluationError,
    EvaluationInProgress,
    HistoryPersistenceError,
    MissingCredential,
    ValidationError,
)
from edugrade.middleware.rate_limit import RATE_LIMITS, limiter
from edugrade.models.documents import DocumentGroup, UploadedDocument
from edugrade.services.document_encoder import load_document
from edugrade.services.evaluation_controller import EvaluationController, build_controller
from edugrade.services.history_store import HistoryStore, get_history_store

router = APIRouter(prefix="/api", tags=["evaluations"])

# First match wins; anything else from the pipeline is an upstream failure
ERROR_STATUS_CODES = (
    (EvaluationInProgress, status.HTTP_409_CONFLICT),
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (DocumentRejected, status.HTTP_400_BAD_REQUEST),
    (MissingCredential, status.HTTP_503_SERVICE_UNAVAILABLE),
    (HistoryPersistenceError, status.HTTP_500_INTERNAL_SERVER_ERROR),
)


def status_code_for(error: EvaluationError) -> int:
    for error_type, status_code in ERROR_STATUS_CODES:
        if isinstance(error, error_type):
            return status_code
    return status.HTTP_502_BAD_GATEWAY


def error_response(
    error: EvaluationError, rejected: Sequence[DocumentRejected] = ()
) -> JSONResponse:
    """Render a pipeline error as one message plus structured detail."""
    body: Dict[str, Any] = {"detail": error.message, "error": error.to_dict()}
    if rejected:
        body["rejected"] = [r.to_dict() for r in rejected]
    return JSONResponse(
        status_code=status_code_for(error),
        content=body,
        headers={
            "X-Evaluation-Stage": error.stage,
            "X-Error-Type": type(error).__name__,
        },
    )


def get_controller(
    history_store: HistoryStore = Depends(get_history_store),
) -> EvaluationController:
    """One controller (session) per request, sharing the history store."""
    return build_controller(history_store=history_store)


async def read_uploads(files: Optional[List[UploadFile]]) -> List[UploadedDocument]:
    """Read uploaded files in order and detect their content types."""
    documents = []
    for upload in files or []:
        content = await upload.read()
        documents.append(load_document(content, upload.filename))
    return documents


@router.post("/evaluations", status_code=status.HTTP_201_CREATED)
@limiter.limit(RATE_LIMITS["evaluate"])  # type: ignore[untyped-decorator]
async def create_evaluation(
    request: Request,
    question_paper: Optional[List[UploadFile]] = File(None, description="Question paper pages in order"),
    answer_key: Optional[List[UploadFile]] = File(None, description="Answer key pages (optional)"),
    student_sheets: Optional[List[UploadFile]] = File(None, description="Student answer sheet pages in order"),
    controller: EvaluationController = Depends(get_controller),
) -> Response:
    """
    Grade student answer sheets against a question paper.

    This endpoint:
    1. Reads and gate-checks each uploaded document (4MB, image or PDF)
    2. Requires a question paper and at least one student sheet
    3. Sends one grading request to Gemini
    4. Normalizes the response into a report and stores it in history
    5. Returns the report with its id in the X-Report-ID header

    Returns:
        201: Report created (oversized/unsupported files listed in "rejected")
        400: Missing question paper or student sheets
        409: Another evaluation is running in this session
        502: Gemini failed or returned output that breaks the report contract
        503: No Gemini API key configured
    """
    uploads = {
        DocumentGroup.question_paper: question_paper,
        DocumentGroup.answer_key: answer_key,
        DocumentGroup.student_sheets: student_sheets,
    }

    rejected: List[DocumentRejected] = []
    for group, files in uploads.items():
        rejected.extend(controller.add_documents(group, await read_uploads(files)))

    try:
        report = await controller.submit()
    except EvaluationError as e:
        return error_response(e, rejected)

    return JSONResponse(
        status_code=status.HTTP_201_CREATED,
        content={
            "report": report.to_json_dict(),
            "rejected": [r.to_dict() for r in rejected],
        },
        headers={"X-Report-ID": str(report.id)},
    )
