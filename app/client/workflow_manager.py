"""Client-side workflow state with offline fallback.

``WorkflowManager`` mirrors loan workflows into a ``WorkflowCache``. While the
server is reachable every mutation is queued and drained immediately; while it
is not, mutations stay queued and ``sync_to_server`` replays them in clock
order, then replaces each cached record with the server's state.
"""

from __future__ import annotations

import logging
import mimetypes
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Sequence
from uuid import uuid4

from app.client.api_client import ApiError, LoanApiClient, OfflineError
from app.client.cache import WorkflowCache
from app.client.models import (
    LOCAL_ID_PREFIX,
    CachedDocument,
    CachedStage,
    CachedTask,
    CachedWorkflow,
    PendingMutation,
    fresh_stages,
    is_local_id,
    utcnow,
)
from app.core import stages as stage_rules
from app.schemas.documents import FailedFileResult, UploadDocumentsResponse
from app.schemas.loan import LoanCreateRequest, LoanStats, StageCount
from app.services.upload_validation import ALLOWED_EXTENSIONS, file_extension

logger = logging.getLogger(__name__)

MAX_UPLOAD_BYTES = 50 * 1024 * 1024


class WorkflowStateError(RuntimeError):
    """The requested operation needs an active workflow or a known stage."""


@dataclass
class SyncReport:
    applied: int = 0
    failed: int = 0
    remapped: dict[str, str] = field(default_factory=dict)
    refreshed: list[str] = field(default_factory=list)
    rejected_files: list[FailedFileResult] = field(default_factory=list)


@dataclass
class UploadOutcome:
    """Files the server stored, files it refused, and whether the upload is still queued."""

    documents: list[CachedDocument]
    failed_files: list[FailedFileResult] = field(default_factory=list)
    queued: bool = False


class WorkflowManager:
    def __init__(self, client: LoanApiClient, cache: WorkflowCache) -> None:
        self.client = client
        self.cache = cache
        self.server_connected = False

    # Connection

    def check_server_connection(self) -> bool:
        try:
            self.client.health()
        except (OfflineError, ApiError) as exc:
            logger.warning("Server unreachable, working offline: %s", exc)
            self.server_connected = False
        else:
            self.server_connected = True
        return self.server_connected

    def _go_offline(self, exc: OfflineError) -> None:
        logger.warning("Lost server connection: %s", exc)
        self.server_connected = False

    # Selection

    @property
    def current_loan(self) -> CachedWorkflow | None:
        loan_id = self.cache.current_loan_id
        return self.cache.get(loan_id) if loan_id else None

    def _require_current(self) -> CachedWorkflow:
        record = self.current_loan
        if record is None:
            raise WorkflowStateError("No active loan workflow")
        return record

    def _require_stage(self, record: CachedWorkflow, stage_id: int) -> CachedStage:
        stage = record.stage(stage_id)
        if stage is None:
            raise WorkflowStateError(f"Unknown stage {stage_id}")
        return stage

    def select_loan(self, loan_id: str) -> CachedWorkflow:
        record = self.cache.get(loan_id)
        if record is None:
            if not self.server_connected or is_local_id(loan_id):
                raise WorkflowStateError(f"Loan {loan_id} is not cached")
            record = self.refresh(loan_id)
        self.cache.current_loan_id = loan_id
        self.cache.save()
        return record

    def current_stage(self) -> CachedStage | None:
        record = self.current_loan
        if record is None:
            return None
        return record.stage(record.current_stage)

    # Creation

    def create_workflow(
        self,
        company_name: str,
        application_type: str = "pf_loan",
        loan_data: dict[str, Any] | None = None,
    ) -> CachedWorkflow:
        request = LoanCreateRequest.model_validate(
            {"company_name": company_name, "application_type": application_type, **(loan_data or {})}
        )
        record: CachedWorkflow | None = None
        if self.server_connected:
            try:
                created = self.client.create_loan(request)
            except OfflineError as exc:
                self._go_offline(exc)
            else:
                record = self._mirror_created(created.loan_id, request)

        if record is None:
            record = CachedWorkflow(
                loan_id=f"{LOCAL_ID_PREFIX}{uuid4().hex[:12].upper()}",
                company_name=request.company_name,
                application_type=request.application_type.value,
                stages=fresh_stages(),
            )
            self.cache.put(record)
            self.cache.enqueue(
                "create_loan", record.loan_id, request.model_dump(mode="json", exclude_none=True)
            )

        self.cache.current_loan_id = record.loan_id
        self.cache.save()
        logger.info("Created workflow %s for %s", record.loan_id, record.company_name)
        return record

    def _mirror_created(self, loan_id: str, request: LoanCreateRequest) -> CachedWorkflow:
        # The loan exists on the server from here on; never queue another create_loan for it
        try:
            return self.refresh(loan_id)
        except OfflineError as exc:
            self._go_offline(exc)
        except ApiError as exc:
            logger.warning("Could not load new loan %s: %s", loan_id, exc)
        record = CachedWorkflow(
            loan_id=loan_id,
            company_name=request.company_name,
            application_type=request.application_type.value,
            stages=fresh_stages(),
            server_synced=False,
        )
        self.cache.put(record)
        return record

    # Stage mutations

    def start_stage(self, stage_id: int) -> CachedStage:
        record = self._require_current()
        stage = self._require_stage(record, stage_id)
        stage.status = "processing"
        stage.progress = 0
        stage.started_at = utcnow()
        record.current_stage = stage_id
        record.status = "processing"
        record.touch()
        self._queue(
            "update_stage",
            record.loan_id,
            {"stage_id": stage_id, "status": "processing", "progress": 0},
        )
        return stage

    def complete_stage(self, stage_id: int) -> CachedStage:
        record = self._require_current()
        stage = self._require_stage(record, stage_id)
        advancing = stage_id == record.current_stage and stage_id < stage_rules.FINAL_STAGE

        stage.status = "completed"
        stage.progress = 100
        stage.completed_at = utcnow()
        for task in stage.tasks:
            task.completed = True
        if stage_id < stage_rules.FINAL_STAGE:
            record.current_stage = stage_id + 1
        else:
            record.status = "completed"
        record.touch()

        if advancing:
            self._queue("advance_stage", record.loan_id, {})
        else:
            self._queue(
                "update_stage",
                record.loan_id,
                {"stage_id": stage_id, "status": "completed", "progress": 100},
            )
        return stage

    def update_stage_progress(
        self, stage_id: int, progress: int, task: str | None = None
    ) -> CachedStage:
        record = self._require_current()
        stage = self._require_stage(record, stage_id)
        stage.progress = min(100, max(0, int(progress)))
        if task:
            match: CachedTask | None = next(
                (item for item in stage.tasks if task in (item.id, item.name)), None
            )
            if match is not None:
                match.completed = True
        record.touch()
        self._queue(
            "update_stage", record.loan_id, {"stage_id": stage_id, "progress": stage.progress}
        )
        return stage

    # Documents

    def _validate_local_file(self, path: Path) -> None:
        if file_extension(path.name) not in ALLOWED_EXTENSIONS:
            raise ValueError(f"Unsupported file type: {path.name}")
        if path.stat().st_size > MAX_UPLOAD_BYTES:
            raise ValueError(f"File is too large: {path.name} (max 50 MB)")

    def upload_documents(
        self,
        paths: Sequence[str | Path],
        document_types: Sequence[str] | None = None,
    ) -> UploadOutcome:
        record = self._require_current()
        files = [Path(path) for path in paths]
        for path in files:
            self._validate_local_file(path)
        types = list(document_types or [])

        if self.server_connected and not is_local_id(record.loan_id):
            try:
                response = self._send_files(record.loan_id, [str(path) for path in files], types)
            except OfflineError as exc:
                self._go_offline(exc)
            else:
                documents = self._documents_from_response(response)
                record.documents.extend(documents)
                record.status = response.workflow_status or record.status
                record.touch()
                self.cache.save()
                self._log_rejected(record.loan_id, response.failed_files)
                return UploadOutcome(documents=documents, failed_files=list(response.failed_files))

        documents = [
            CachedDocument(
                local_id=f"local-{uuid4().hex[:8]}",
                filename=path.name,
                type=types[index] if index < len(types) else "other",
                size=path.stat().st_size,
                local_path=str(path.resolve()),
            )
            for index, path in enumerate(files)
        ]
        record.documents.extend(documents)
        record.touch()
        self.cache.enqueue(
            "upload_documents",
            record.loan_id,
            {"paths": [doc.local_path for doc in documents], "document_types": types},
        )
        self.cache.save()
        return UploadOutcome(documents=documents, queued=True)

    def _send_files(
        self, loan_id: str, paths: Sequence[str], document_types: Sequence[str]
    ) -> UploadDocumentsResponse:
        files = []
        for raw_path in paths:
            path = Path(raw_path)
            content_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
            files.append((path.name, path.read_bytes(), content_type))
        return self.client.upload_documents(loan_id, files, document_types)

    @staticmethod
    def _log_rejected(loan_id: str, failed_files: Sequence[FailedFileResult]) -> None:
        for failed in failed_files:
            logger.warning("Server rejected %s for %s: %s", failed.filename, loan_id, failed.error)

    @staticmethod
    def _documents_from_response(response: UploadDocumentsResponse) -> list[CachedDocument]:
        return [
            CachedDocument(
                document_id=item.document_id,
                filename=item.filename,
                type=item.type,
                size=item.size,
                storage_key=item.storage_key,
                url=item.url,
                server_synced=True,
            )
            for item in response.uploaded_files
        ]

    # Read models

    def get_stats(self) -> LoanStats:
        if self.server_connected:
            try:
                return self.client.get_stats()
            except OfflineError as exc:
                self._go_offline(exc)

        records = self.cache.records()
        counts = {status: 0 for status in stage_rules.WORKFLOW_STATUSES}
        by_stage: dict[int, int] = {}
        for record in records:
            counts[record.status] = counts.get(record.status, 0) + 1
            by_stage[record.current_stage] = by_stage.get(record.current_stage, 0) + 1
        return LoanStats(
            total=len(records),
            by_stage=[StageCount(stage=stage, count=count) for stage, count in sorted(by_stage.items())],
            **counts,
        )

    def display_overall_progress(self, loan_id: str | None = None) -> int:
        record = self.cache.get(loan_id) if loan_id else self.current_loan
        if record is None:
            return 0
        completed = sum(1 for stage in record.stages if stage.status == "completed")
        current = record.stage(record.current_stage)
        current_progress = current.progress if current and current.status != "completed" else 0
        return stage_rules.display_overall_progress(completed, current_progress)

    def refresh(self, loan_id: str) -> CachedWorkflow:
        """Replace the cached record with the server's workflow and documents."""
        status = self.client.get_workflow_status(loan_id)
        documents = self.client.list_documents(loan_id)
        previous = self.cache.get(loan_id)

        stages = []
        for remote in status.stages:
            definition = stage_rules.get_stage_definition(remote.stage_id)
            done = remote.status.value == "completed"
            stages.append(
                CachedStage(
                    stage_id=remote.stage_id,
                    name=remote.stage_name,
                    title=remote.stage_title,
                    status=remote.status.value,
                    progress=remote.progress,
                    started_at=remote.started_at,
                    completed_at=remote.completed_at,
                    tasks=[
                        CachedTask(id=task.id, name=task.name, completed=done)
                        for task in definition.tasks
                    ],
                )
            )

        record = CachedWorkflow(
            loan_id=status.loan_id,
            company_name=status.company_name,
            application_type=previous.application_type if previous else "pf_loan",
            current_stage=status.current_stage,
            status=status.workflow_status.value,
            stages=stages or fresh_stages(),
            documents=[
                CachedDocument(
                    document_id=document.id,
                    filename=document.original_filename,
                    type=document.document_type,
                    size=document.file_size,
                    storage_key=document.storage_key,
                    server_synced=True,
                    uploaded_at=document.created_at or utcnow(),
                )
                for document in documents
            ],
            server_synced=True,
            created_at=previous.created_at if previous else utcnow(),
        )
        self.cache.put(record)
        self.cache.save()
        return record

    # Sync

    def _queue(self, kind, loan_id: str, payload: dict[str, Any]) -> None:
        self.cache.enqueue(kind, loan_id, payload)
        self.cache.save()
        if self.server_connected:
            self._drain(SyncReport())

    def _apply(self, mutation: PendingMutation, report: SyncReport) -> None:
        payload = mutation.payload
        if mutation.kind == "create_loan":
            created = self.client.create_loan(LoanCreateRequest.model_validate(payload))
            report.remapped[mutation.loan_id] = created.loan_id
            self.cache.remap_loan_id(mutation.loan_id, created.loan_id)
        elif mutation.kind == "update_stage":
            self.client.update_stage(
                mutation.loan_id,
                payload["stage_id"],
                status=payload.get("status"),
                progress=payload.get("progress"),
            )
        elif mutation.kind == "advance_stage":
            self.client.advance_stage(mutation.loan_id, payload.get("stage_data"))
        elif mutation.kind == "upload_documents":
            response = self._send_files(
                mutation.loan_id, payload["paths"], payload.get("document_types") or []
            )
            self._log_rejected(mutation.loan_id, response.failed_files)
            report.rejected_files.extend(response.failed_files)

    def _drain(self, report: SyncReport) -> SyncReport:
        for mutation in self.cache.pending():
            # Mutations on an unsynced loan wait for its create_loan to succeed
            if is_local_id(mutation.loan_id) and mutation.kind != "create_loan":
                continue
            mutation.attempts += 1
            try:
                self._apply(mutation, report)
            except OfflineError as exc:
                self._go_offline(exc)
                break
            except (ApiError, OSError) as exc:
                logger.warning(
                    "Mutation %s (%s) for %s failed: %s",
                    mutation.seq,
                    mutation.kind,
                    mutation.loan_id,
                    exc,
                )
                mutation.last_error = str(exc)
                report.failed += 1
                continue
            self.cache.dequeue(mutation.seq)
            report.applied += 1
        self.cache.save()
        return report

    def sync_to_server(self) -> SyncReport:
        report = SyncReport()
        if not self.server_connected and not self.check_server_connection():
            logger.warning("Cannot sync: server is not reachable")
            return report

        touched = {mutation.loan_id for mutation in self.cache.pending()}
        touched.update(record.loan_id for record in self.cache.records() if not record.server_synced)
        self._drain(report)
        touched = {report.remapped.get(loan_id, loan_id) for loan_id in touched}

        if self.server_connected:
            for loan_id in sorted(touched):
                if is_local_id(loan_id):
                    continue
                try:
                    self.refresh(loan_id)
                except OfflineError as exc:
                    self._go_offline(exc)
                    break
                except ApiError as exc:
                    logger.warning("Could not refresh %s after sync: %s", loan_id, exc)
                    continue
                report.refreshed.append(loan_id)

        logger.info(
            "Sync finished: %s applied, %s failed, %s refreshed, %s files rejected",
            report.applied,
            report.failed,
            len(report.refreshed),
            len(report.rejected_files),
        )
        return report
