"""
Tests for the evaluation controller workflow.

The inference client is mocked; encoding, composition, normalization and
history run for real against an in-memory store.
"""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from edugrade.config import Settings
from edugrade.errors import (
    AuthRejected,
    DocumentTooLarge,
    EvaluationInProgress,
    HistoryPersistenceError,
    MalformedResponse,
    MissingCredential,
    TransportFailure,
    ValidationError,
)
from edugrade.models.documents import DocumentGroup, UploadedDocument
from edugrade.services.document_encoder import DocumentEncoder
from edugrade.services.evaluation_controller import (
    EvaluationController,
    EvaluationState,
    build_controller,
)
from edugrade.services.gemini_client import GeminiInferenceClient
from edugrade.services.history_store import InMemoryHistoryStore, JsonFileHistoryStore
from edugrade.services.report_normalizer import ReportNormalizer
from edugrade.services.request_composer import RequestComposer

GRADING_RESPONSE = json.dumps({
    "studentInfo": {"name": "Meera", "subject": "Chemistry"},
    "grades": [
        {"questionNumber": "1", "marksObtained": 2, "totalMarks": 2},
        {"questionNumber": "2", "marksObtained": 1, "totalMarks": 3},
    ],
    "totalScore": 10,
    "maxScore": 10,
    "percentage": 100,
})


def page(name: str, content: bytes = b"page bytes") -> UploadedDocument:
    return UploadedDocument(raw_bytes=content, mime_type="image/png", display_name=name)


@pytest.fixture
def inference():
    client = MagicMock(spec=GeminiInferenceClient)
    client.ensure_credential.return_value = "test-api-key"
    client.send = AsyncMock(return_value=GRADING_RESPONSE)
    return client


@pytest.fixture
def store():
    return InMemoryHistoryStore()


@pytest.fixture
def controller(inference, store):
    return EvaluationController(
        encoder=DocumentEncoder(max_bytes=64),
        composer=RequestComposer(),
        inference=inference,
        normalizer=ReportNormalizer(),
        history_store=store,
    )


def select_minimum(controller):
    controller.add_documents(DocumentGroup.question_paper, [page("qp1.png")])
    controller.add_documents(DocumentGroup.student_sheets, [page("s1.png")])


class TestSelection:

    def test_initial_state(self, controller):
        assert controller.state is EvaluationState.idle
        assert controller.missing_groups() == [DocumentGroup.question_paper, DocumentGroup.student_sheets]

    def test_add_documents_moves_to_collecting(self, controller):
        rejected = controller.add_documents(DocumentGroup.question_paper, [page("qp1.png"), page("qp2.png")])

        assert rejected == []
        assert controller.state is EvaluationState.collecting
        assert [d.display_name for d in controller.documents[DocumentGroup.question_paper]] == ["qp1.png", "qp2.png"]

    def test_oversized_document_is_rejected_and_siblings_kept(self, controller):
        rejected = controller.add_documents(
            DocumentGroup.student_sheets,
            [page("s1.png"), page("big.png", b"x" * 65), page("s2.png")],
        )

        assert [type(r) for r in rejected] == [DocumentTooLarge]
        assert [d.display_name for d in controller.documents[DocumentGroup.student_sheets]] == ["s1.png", "s2.png"]

    def test_answer_key_is_optional(self, controller):
        select_minimum(controller)

        assert controller.missing_groups() == []

    def test_remove_document(self, controller):
        controller.add_documents(DocumentGroup.question_paper, [page("qp1.png"), page("qp2.png")])

        removed = controller.remove_document(DocumentGroup.question_paper, 0)

        assert removed.display_name == "qp1.png"
        assert [d.display_name for d in controller.documents[DocumentGroup.question_paper]] == ["qp2.png"]

    def test_reset_clears_selection(self, controller):
        select_minimum(controller)

        controller.reset()

        assert all(not docs for docs in controller.documents.values())
        assert controller.active_report is None
        assert controller.last_error is None


class TestSubmit:

    @pytest.mark.asyncio
    async def test_success_stores_report(self, controller, inference, store):
        select_minimum(controller)

        report = await controller.submit()

        assert controller.state is EvaluationState.succeeded
        assert controller.active_report is report
        assert report.total_score == 3
        assert report.max_score == 5
        assert report.percentage == 60
        assert (await store.load()).ids == [report.id]
        assert controller.history.ids == [report.id]
        inference.send.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_request_carries_labelled_pages(self, controller, inference):
        controller.add_documents(DocumentGroup.question_paper, [page("qp1.png"), page("qp2.png")])
        controller.add_documents(DocumentGroup.student_sheets, [page("s1.png")])

        await controller.submit()

        request = inference.send.await_args.args[0]
        assert request.text_parts[1:] == (
            "Question Paper - Page 1:",
            "Question Paper - Page 2:",
            "Student Answer Sheet - Page 1:",
        )

    @pytest.mark.asyncio
    async def test_missing_student_sheets_fails_validation(self, controller, inference):
        controller.add_documents(DocumentGroup.question_paper, [page("qp1.png")])

        with pytest.raises(ValidationError) as exc_info:
            await controller.submit()

        assert exc_info.value.missing_groups == ["student_sheets"]
        assert "at least one answer sheet" in exc_info.value.message
        assert controller.state is EvaluationState.collecting
        inference.ensure_credential.assert_not_called()
        inference.send.assert_not_called()

    @pytest.mark.asyncio
    async def test_missing_credential_fails_before_encoding(self, controller, inference, store):
        select_minimum(controller)
        inference.ensure_credential.side_effect = MissingCredential(["GEMINI_API_KEY"])
        controller.encoder.encode_groups = AsyncMock()

        with pytest.raises(MissingCredential):
            await controller.submit()

        controller.encoder.encode_groups.assert_not_awaited()
        inference.send.assert_not_called()
        assert controller.state is EvaluationState.failed
        assert len(await store.load()) == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("failure", [
        TransportFailure("timed out"),
        AuthRejected("bad key", status_code=401),
    ])
    async def test_inference_failure_keeps_selection(self, controller, inference, store, failure):
        select_minimum(controller)
        inference.send.side_effect = failure

        with pytest.raises(type(failure)):
            await controller.submit()

        assert controller.state is EvaluationState.failed
        assert controller.last_error is failure
        assert len(controller.documents[DocumentGroup.question_paper]) == 1
        assert len(controller.documents[DocumentGroup.student_sheets]) == 1
        assert len(await store.load()) == 0

    @pytest.mark.asyncio
    async def test_malformed_response_is_not_persisted(self, controller, inference, store):
        select_minimum(controller)
        inference.send.return_value = "Sorry, I cannot grade this."

        with pytest.raises(MalformedResponse):
            await controller.submit()

        assert controller.state is EvaluationState.failed
        assert controller.active_report is None
        assert len(await store.load()) == 0

    @pytest.mark.asyncio
    async def test_resubmit_after_failure(self, controller, inference, store):
        select_minimum(controller)
        inference.send.side_effect = [TransportFailure("reset"), GRADING_RESPONSE]

        with pytest.raises(TransportFailure):
            await controller.submit()
        report = await controller.submit()

        assert controller.state is EvaluationState.succeeded
        assert (await store.load()).ids == [report.id]

    @pytest.mark.asyncio
    async def test_persistence_failure_surfaces(self, controller, store):
        select_minimum(controller)
        store._write = MagicMock(side_effect=OSError("read-only"))

        with pytest.raises(HistoryPersistenceError):
            await controller.submit()

        assert controller.state is EvaluationState.failed
        assert controller.active_report is None

    @pytest.mark.asyncio
    async def test_unexpected_error_marks_failed(self, controller, inference):
        select_minimum(controller)
        inference.send.side_effect = RuntimeError("boom")

        with pytest.raises(RuntimeError):
            await controller.submit()

        assert controller.state is EvaluationState.failed
        assert "boom" in controller.last_error.message

    @pytest.mark.asyncio
    async def test_all_sheets_rejected_at_encoding(self, controller, inference):
        controller.add_documents(DocumentGroup.question_paper, [page("qp1.png")])
        controller.documents[DocumentGroup.student_sheets].append(page("empty.png", b""))

        with pytest.raises(ValidationError) as exc_info:
            await controller.submit()

        assert exc_info.value.missing_groups == ["student_sheets"]
        assert [r.display_name for r in exc_info.value.rejected] == ["empty.png"]
        inference.send.assert_not_called()

    @pytest.mark.asyncio
    async def test_second_submit_while_running_is_refused(self, controller, inference, store):
        select_minimum(controller)
        release = asyncio.Event()

        async def slow_send(request):
            await release.wait()
            return GRADING_RESPONSE

        inference.send.side_effect = slow_send
        first = asyncio.create_task(controller.submit())
        while controller.state is not EvaluationState.submitting:
            await asyncio.sleep(0)

        with pytest.raises(EvaluationInProgress):
            await controller.submit()
        with pytest.raises(EvaluationInProgress):
            controller.add_documents(DocumentGroup.answer_key, [page("ak.png")])

        release.set()
        report = await first

        assert (await store.load()).ids == [report.id]
        assert inference.send.await_count == 1

    @pytest.mark.asyncio
    async def test_cancellation_returns_to_collecting(self, controller, inference, store):
        select_minimum(controller)
        started = asyncio.Event()

        async def hanging_send(request):
            started.set()
            await asyncio.Event().wait()

        inference.send.side_effect = hanging_send
        task = asyncio.create_task(controller.submit())
        await started.wait()

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert controller.state is EvaluationState.collecting
        assert len(controller.documents[DocumentGroup.student_sheets]) == 1
        assert len(await store.load()) == 0


class TestHistory:

    @pytest.mark.asyncio
    async def test_open_and_delete_report(self, controller):
        select_minimum(controller)
        report = await controller.submit()
        controller.reset()

        assert await controller.open_report(report.id) == report
        assert controller.active_report == report

        await controller.delete_report(report.id)

        assert controller.active_report is None
        assert len(controller.history) == 0

    @pytest.mark.asyncio
    async def test_open_unknown_report(self, controller):
        assert await controller.open_report("00000000-0000-0000-0000-000000000000") is None
        assert controller.active_report is None

    def test_construction_does_not_touch_storage(self, inference):
        store = MagicMock(spec=InMemoryHistoryStore)

        seeded = EvaluationController(
            DocumentEncoder(), RequestComposer(), inference, ReportNormalizer(), store
        )

        assert len(seeded.history) == 0
        store.load.assert_not_called()

    @pytest.mark.asyncio
    async def test_refresh_history_reads_store(self, controller, store):
        select_minimum(controller)
        report = await controller.submit()
        other = EvaluationController(
            DocumentEncoder(), RequestComposer(), controller.inference, ReportNormalizer(), store
        )

        assert len(other.history) == 0
        assert (await other.refresh_history()).ids == [report.id]
        assert other.history.ids == [report.id]

        store.payload = "corrupt"
        assert len(await other.refresh_history()) == 0

    @pytest.mark.asyncio
    async def test_open_report_sees_reports_written_elsewhere(self, controller, store):
        select_minimum(controller)
        report = await controller.submit()
        other = EvaluationController(
            DocumentEncoder(), RequestComposer(), controller.inference, ReportNormalizer(), store
        )

        assert await other.open_report(str(report.id)) == report


class TestAbandon:

    @pytest.mark.asyncio
    async def test_abandon_after_failed_attempt_returns_to_collecting(self, controller, inference):
        select_minimum(controller)
        inference.send.side_effect = TransportFailure("reset")

        with pytest.raises(TransportFailure):
            await controller.submit()
        assert controller.state is EvaluationState.failed

        controller.abandon()

        assert controller.state is EvaluationState.collecting
        assert len(controller.documents[DocumentGroup.question_paper]) == 1
        assert len(controller.documents[DocumentGroup.student_sheets]) == 1

    @pytest.mark.asyncio
    async def test_abandon_while_submitting_is_a_noop(self, controller, inference):
        select_minimum(controller)
        release = asyncio.Event()

        async def slow_send(request):
            await release.wait()
            return GRADING_RESPONSE

        inference.send.side_effect = slow_send
        task = asyncio.create_task(controller.submit())
        while controller.state is not EvaluationState.submitting:
            await asyncio.sleep(0)

        controller.abandon()
        assert controller.state is EvaluationState.submitting

        release.set()
        await task
        assert controller.state is EvaluationState.succeeded


class TestBuildController:

    def test_wires_from_settings(self, tmp_path):
        settings = Settings(
            data_dir=str(tmp_path),
            model_name="gemini-3-pro-preview",
            max_document_bytes=1024,
            encode_concurrency=2,
        )

        controller = build_controller(settings)

        assert controller.encoder.max_bytes == 1024
        assert controller.encoder.concurrency == 2
        assert controller.composer.model == "gemini-3-pro-preview"
        assert isinstance(controller.history_store, JsonFileHistoryStore)
        assert isinstance(controller.inference, GeminiInferenceClient)

    def test_uses_given_history_store(self, tmp_path):
        store = InMemoryHistoryStore()

        controller = build_controller(Settings(data_dir=str(tmp_path)), history_store=store)

        assert controller.history_store is store
