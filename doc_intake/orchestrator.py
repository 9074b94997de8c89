"""Request-level sequencing of the document intake pipeline.

One call to :meth:`IntakeOrchestrator.handle_upload` walks a single upload
through parsing, storage, text extraction, classification and taxonomy
reconciliation. Every stage announces itself on the progress channel first.
Parsing failures answer 400 without an ``error`` event; any later failure
publishes ``error`` as the last event of the request and answers 500.
"""

from __future__ import annotations

import logging
import os
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path

from starlette.concurrency import run_in_threadpool

from doc_intake.classification import Classifier, ReconciledClassification, reconcile
from doc_intake.errors import MalformedRequest, NoFileInRequest
from doc_intake.multipart_reader import DEFAULT_UPLOAD_EXTENSION, extract_uploaded_file
from doc_intake.progress import ProgressPublisher
from doc_intake.retention import KeepEverything, RetentionPolicy
from doc_intake.taxonomy_store import TaxonomyStore
from doc_intake.text_extraction import TextExtractionRouter

logger = logging.getLogger(__name__)


@dataclass
class UploadJob:
    original_filename: str
    stored_path: Path
    extracted_text: str = ""
    classification: ReconciledClassification | None = None


@dataclass(frozen=True)
class IntakeResult:
    status: str
    message: str
    status_code: int
    payload: dict | None = None

    def response_body(self) -> dict:
        if self.status == "success" and self.payload is not None:
            return self.payload
        return {"error": self.message}


def truncate_text(text: str, limit: int) -> str:
    return text[:limit]


def store_upload(upload_dir: Path, original_filename: str, content: bytes) -> Path:
    """Write ``content`` to a new ``upload_<ms>_<random><ext>`` file and return its path.

    The file is created exclusively, so concurrent uploads never share a path.
    """
    extension = Path(original_filename).suffix or DEFAULT_UPLOAD_EXTENSION
    upload_dir.mkdir(parents=True, exist_ok=True)
    fd, name = tempfile.mkstemp(
        prefix=f"upload_{int(time.time() * 1000)}_",
        suffix=extension,
        dir=upload_dir,
    )
    with os.fdopen(fd, "wb") as handle:
        handle.write(content)
    return Path(name)


class IntakeOrchestrator:
    def __init__(
        self,
        *,
        router: TextExtractionRouter,
        classifier: Classifier,
        taxonomy: TaxonomyStore,
        progress: ProgressPublisher,
        upload_dir: Path,
        snippet_chars: int = 3000,
        retention: RetentionPolicy | None = None,
    ):
        self.router = router
        self.classifier = classifier
        self.taxonomy = taxonomy
        self.progress = progress
        self.upload_dir = Path(upload_dir)
        self.snippet_chars = snippet_chars
        self.retention = retention or KeepEverything()

    async def handle_upload(self, body: bytes, content_type: str | None, model: str) -> IntakeResult:
        await self.progress.publish("upload", "Receiving file...")

        try:
            uploaded = extract_uploaded_file(body, content_type)
        except MalformedRequest as exc:
            logger.warning("Rejected upload: %s", exc)
            return IntakeResult(status="error", message="Invalid Content-Type header.", status_code=400)
        except NoFileInRequest as exc:
            logger.warning("Rejected upload: %s", exc)
            return IntakeResult(status="error", message="No file found in the request.", status_code=400)

        try:
            job = await self._store(uploaded.filename, uploaded.content)
            return await self._process(job, model)
        except Exception:  # noqa: BLE001 - every stage failure becomes a 500 response
            logger.exception("Failed to process upload %s", uploaded.filename)
            await self.progress.publish("error", "Failed to process the file.")
            return IntakeResult(status="error", message="Failed to process the file.", status_code=500)

    async def _store(self, original_filename: str, content: bytes) -> UploadJob:
        stored_path = await run_in_threadpool(store_upload, self.upload_dir, original_filename, content)
        await self.progress.publish("upload", f"File saved as {stored_path.name}")
        return UploadJob(original_filename=original_filename, stored_path=stored_path)

    async def _process(self, job: UploadJob, model: str) -> IntakeResult:
        try:
            job.extracted_text = truncate_text(
                await self.router.extract(job.stored_path), self.snippet_chars
            )
            taxonomy = await run_in_threadpool(self.taxonomy.read_all)

            await self.progress.publish("llm", f"Analyzing text with model {model}...")
            result = await self.classifier.classify(job.extracted_text, taxonomy, model)
            await self.progress.publish("llm", "Analysis complete.")

            await self.progress.publish("process", "Matching against known document types...")
            job.classification = reconcile(result, taxonomy)
        finally:
            self.retention.release_upload(job.stored_path)

        await self.progress.publish("done", "Processing complete.")
        logger.info(
            "Classified %s as '%s' (new type: %s)",
            job.original_filename,
            job.classification.type,
            job.classification.is_new_type,
        )
        return IntakeResult(
            status="success",
            message="Document classified.",
            status_code=200,
            payload=job.classification.to_response(),
        )
