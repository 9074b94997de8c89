from __future__ import annotations

import importlib.metadata
import importlib.util
import logging
import shutil
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Callable, Protocol

from starlette.concurrency import run_in_threadpool

from doc_intake.errors import ExternalServiceFailure
from doc_intake.progress import ProgressPublisher

logger = logging.getLogger(__name__)

OCR_EXTENSIONS = {".pdf", ".png", ".jpg", ".jpeg", ".bmp"}
PLAIN_TEXT_EXTENSIONS = {".txt", ".md", ".csv", ".json", ".xml", ".html", ".htm"}
OCR_EXECUTABLES = ("tesseract", "pdftoppm")


@dataclass(frozen=True)
class ExtractionStatus:
    docling_available: bool
    docling_version: str | None
    missing_executables: list[str]
    message: str

    def to_dict(self) -> dict:
        return asdict(self)


def get_extraction_status(
    module_name: str = "docling",
    which: Callable[[str], str | None] = shutil.which,
) -> ExtractionStatus:
    """Report which extraction routes can run on this host."""
    docling_available = importlib.util.find_spec(module_name) is not None
    version = None
    if docling_available:
        try:
            version = importlib.metadata.version(module_name)
        except importlib.metadata.PackageNotFoundError:
            version = None

    missing = [name for name in OCR_EXECUTABLES if which(name) is None]
    problems = []
    if not docling_available:
        problems.append("Docling is not installed; office formats cannot be converted.")
    if missing:
        problems.append(f"OCR executables not found on PATH: {', '.join(missing)}.")

    return ExtractionStatus(
        docling_available=docling_available,
        docling_version=version,
        missing_executables=missing,
        message=" ".join(problems) or "All extraction routes are available.",
    )


class TextExtractor(Protocol):
    def extract(self, file_path: Path) -> str:
        ...


class OcrRunner(Protocol):
    async def run(self, file_path: Path) -> str:
        ...


def _docling_converter() -> Any:
    from docling.document_converter import DocumentConverter

    return DocumentConverter()


class DirectExtractionAdapter:
    """Text extraction for office formats, keyed by file extension."""

    def __init__(self, converter_factory: Callable[[], Any] = _docling_converter):
        self._converter_factory = converter_factory
        self._converter: Any = None

    def _get_converter(self) -> Any:
        if self._converter is None:
            self._converter = self._converter_factory()
        return self._converter

    def extract(self, file_path: Path) -> str:
        extension = file_path.suffix.lower()
        if extension in PLAIN_TEXT_EXTENSIONS:
            try:
                return file_path.read_text(encoding="utf-8", errors="replace")
            except OSError as exc:
                raise ExternalServiceFailure(f"Could not read {file_path.name}: {exc}") from exc

        try:
            conversion = self._get_converter().convert(str(file_path))
            document = conversion.document if hasattr(conversion, "document") else conversion
            if not hasattr(document, "export_to_markdown"):
                raise ValueError("Docling conversion did not return a Markdown-capable document.")
            return document.export_to_markdown()
        except Exception as exc:  # noqa: BLE001
            raise ExternalServiceFailure(
                f"Text extraction failed for {file_path.name} ({extension or 'no extension'}): {exc}"
            ) from exc


class TextExtractionRouter:
    def __init__(
        self,
        ocr: OcrRunner,
        direct: TextExtractor,
        progress: ProgressPublisher,
    ):
        self.ocr = ocr
        self.direct = direct
        self.progress = progress

    @staticmethod
    def uses_ocr(file_path: Path) -> bool:
        return file_path.suffix.lower() in OCR_EXTENSIONS

    async def extract(self, file_path: Path) -> str:
        file_path = Path(file_path)
        extension = file_path.suffix.lower()

        if self.uses_ocr(file_path):
            await self.progress.publish("ocr", f"Using Tesseract OCR for {file_path.name}")
            return await self.ocr.run(file_path)

        await self.progress.publish(
            "extract", f"Extracting text from {file_path.name} ({extension or 'no extension'})..."
        )
        text = await run_in_threadpool(self.direct.extract, file_path)
        logger.info("Extracted %d characters from %s", len(text), file_path.name)
        await self.progress.publish("extract", "Text extracted.")
        return text
