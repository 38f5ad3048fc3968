"""Evaluation orchestration.

The controller owns one session's pending document selection and drives a
submission through encode -> compose -> infer -> normalize -> persist.

State machine::

    IDLE -> COLLECTING -> VALIDATING -> SUBMITTING -> SUCCEEDED | FAILED

A failed or cancelled submission keeps the selected documents so the user
can resubmit straight away; only ``reset()`` clears them.
"""

import asyncio
import json
import logging
import time
from enum import Enum
from typing import Dict, List, Optional, Sequence, Union
from uuid import UUID

from edugrade.config import Settings, get_settings
from edugrade.errors import (
    DocumentRejected,
    EvaluationError,
    EvaluationInProgress,
    ValidationError,
)
from edugrade.models.documents import GROUP_ORDER, DocumentGroup, UploadedDocument
from edugrade.models.report import HistoryLog, Report
from edugrade.services.credentials import CredentialProvider
from edugrade.services.document_encoder import DocumentEncoder
from edugrade.services.gemini_client import GeminiInferenceClient
from edugrade.services.history_store import HistoryStore, build_history_store
from edugrade.services.report_normalizer import ReportNormalizer
from edugrade.services.request_composer import RequestComposer

logger = logging.getLogger(__name__)


class EvaluationState(str, Enum):
    idle = "idle"
    collecting = "collecting"
    validating = "validating"
    submitting = "submitting"
    succeeded = "succeeded"
    failed = "failed"


class EvaluationController:
    """Single-session evaluation workflow.

    Args:
        encoder: Applies document gates and encodes documents
        composer: Builds the inference request
        inference: Sends the request to the grading model
        normalizer: Turns response text into a Report
        history_store: Durable report history
    """

    def __init__(
        self,
        encoder: DocumentEncoder,
        composer: RequestComposer,
        inference: GeminiInferenceClient,
        normalizer: ReportNormalizer,
        history_store: HistoryStore,
    ):
        self.encoder = encoder
        self.composer = composer
        self.inference = inference
        self.normalizer = normalizer
        self.history_store = history_store

        self.state = EvaluationState.idle
        self.documents: Dict[DocumentGroup, List[UploadedDocument]] = {g: [] for g in GROUP_ORDER}
        self.active_report: Optional[Report] = None
        self.last_error: Optional[EvaluationError] = None
        self.rejected: List[DocumentRejected] = []
        self._history = HistoryLog()

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    def add_documents(
        self, group: DocumentGroup, documents: Sequence[UploadedDocument]
    ) -> List[DocumentRejected]:
        """
        Add documents to a group, rejecting any that fail the gates.

        Accepted documents are appended in order. Rejections are returned
        together so they can be reported at once.
        """
        self._ensure_not_submitting()
        accepted, rejected = self.encoder.partition(documents)
        self.documents[group].extend(accepted)
        self.last_error = None
        self.state = EvaluationState.collecting
        return rejected

    def remove_document(self, group: DocumentGroup, index: int) -> UploadedDocument:
        """Remove one document from a group by position."""
        self._ensure_not_submitting()
        removed = self.documents[group].pop(index)
        self.state = EvaluationState.collecting
        return removed

    def reset(self) -> None:
        """Clear selections, the active report and the last error."""
        self._ensure_not_submitting()
        self.documents = {g: [] for g in GROUP_ORDER}
        self.active_report = None
        self.last_error = None
        self.rejected = []
        self.state = EvaluationState.collecting

    def abandon(self) -> None:
        """Return to collecting after the caller stopped waiting.

        A timeout can land between attempts of a retried submission, after
        the previous attempt already failed. Selections are kept.
        """
        if self.state is not EvaluationState.submitting:
            self.state = EvaluationState.collecting

    def missing_groups(self) -> List[DocumentGroup]:
        return [g for g in GROUP_ORDER if g.required and not self.documents[g]]

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    async def submit(self) -> Report:
        """
        Evaluate the selected documents.

        Returns:
            The new Report, already stored in history

        Raises:
            EvaluationInProgress: Another submission is running
            ValidationError: Question paper or student sheets missing
            EvaluationError: Any stage failure (credential, inference,
                normalization, persistence)
        """
        self._ensure_not_submitting()

        self.state = EvaluationState.validating
        missing = self.missing_groups()
        if missing:
            self.state = EvaluationState.collecting
            error = ValidationError(
                "Please provide a question paper and at least one answer sheet.",
                missing_groups=[g.value for g in missing],
            )
            self.last_error = error
            raise error

        self.state = EvaluationState.submitting
        self.last_error = None
        self.rejected = []
        started = time.time()

        try:
            report = await self._run_pipeline()
            self._history = await self.history_store.insert(report)
        except asyncio.CancelledError:
            logger.info("Evaluation cancelled, returning to collecting")
            self.state = EvaluationState.collecting
            raise
        except EvaluationError as e:
            self._fail(e, started)
            raise
        except Exception as e:
            self._fail(EvaluationError(f"Evaluation failed unexpectedly: {e}"), started)
            raise

        self.active_report = report
        self.state = EvaluationState.succeeded
        logger.info(json.dumps({
            "message": "Evaluation succeeded",
            "report_id": str(report.id),
            "percentage": report.percentage,
            "grades": len(report.grades),
            "processing_time_ms": round((time.time() - started) * 1000, 2),
        }))
        return report

    async def _run_pipeline(self) -> Report:
        # Fail before encoding anything when no credential is configured
        self.inference.ensure_credential()

        encoded, rejected = await self.encoder.encode_groups(self.documents)
        self.rejected = rejected

        emptied = [g for g in GROUP_ORDER if g.required and not encoded[g]]
        if emptied:
            raise ValidationError(
                "No acceptable documents left for: "
                + ", ".join(g.label for g in emptied),
                missing_groups=[g.value for g in emptied],
                rejected=rejected,
            )

        request = self.composer.compose_groups(encoded)
        raw_text = await self.inference.send(request)
        return self.normalizer.normalize(raw_text)

    def _fail(self, error: EvaluationError, started: float) -> None:
        self.state = EvaluationState.failed
        self.last_error = error
        logger.error(json.dumps({
            "message": "Evaluation failed",
            "processing_time_ms": round((time.time() - started) * 1000, 2),
            "error": error.to_dict(),
        }))

    def _ensure_not_submitting(self) -> None:
        if self.state is EvaluationState.submitting:
            raise EvaluationInProgress()

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    @property
    def history(self) -> HistoryLog:
        """History as of the last refresh, insert or delete."""
        return self._history

    async def refresh_history(self) -> HistoryLog:
        self._history = await self.history_store.load()
        return self._history

    async def open_report(self, report_id: Union[UUID, str]) -> Optional[Report]:
        """Make a past report the active one (None if it is not in history)."""
        report = (await self.refresh_history()).get(UUID(str(report_id)))
        if report is not None:
            self.active_report = report
        return report

    async def delete_report(self, report_id: Union[UUID, str]) -> HistoryLog:
        """Delete a report from history; unknown ids leave history unchanged."""
        self._history = await self.history_store.remove(report_id)
        if self.active_report is not None and str(self.active_report.id) == str(report_id):
            self.active_report = None
        return self._history


def build_controller(
    settings: Optional[Settings] = None,
    history_store: Optional[HistoryStore] = None,
    credentials: Optional[CredentialProvider] = None,
) -> EvaluationController:
    """Wire a controller from configuration."""
    settings = settings or get_settings()
    return EvaluationController(
        encoder=DocumentEncoder(
            max_bytes=settings.max_document_bytes,
            concurrency=settings.encode_concurrency,
        ),
        composer=RequestComposer(model=settings.model_name),
        inference=GeminiInferenceClient(credentials=credentials),
        normalizer=ReportNormalizer(),
        history_store=history_store or build_history_store(settings),
    )
