"""OCR path of the intake pipeline.

Paginated documents are rasterized into one PNG per page inside a fresh
scratch directory, single images are copied there as the only page, and every
page is run through tesseract with a sidecar ``.txt`` output. Failures never
escape :meth:`OcrPipeline.run`; the caller gets an empty string instead.
"""

from __future__ import annotations

import logging
import shutil
import tempfile
from pathlib import Path
from typing import Protocol

import pytesseract
from pdf2image import convert_from_path
from pdf2image.exceptions import PDFInfoNotInstalledError, PDFPageCountError, PDFSyntaxError
from starlette.concurrency import run_in_threadpool

from doc_intake.errors import ExternalToolFailure
from doc_intake.progress import ProgressPublisher
from doc_intake.retention import KeepEverything, RetentionPolicy

logger = logging.getLogger(__name__)

PAGINATED_EXTENSIONS = {".pdf"}


class PageRasterizer(Protocol):
    def rasterize(self, pdf_path: Path, output_dir: Path) -> list[Path]:
        ...


class TextRecognitionEngine(Protocol):
    def recognize(self, image_path: Path, output_base: Path) -> Path:
        """Write recognized text next to ``output_base`` and return the sidecar path."""
        ...


class PdfToPpmRasterizer:
    def __init__(self, dpi: int = 150, output_prefix: str = "page"):
        self.dpi = dpi
        self.output_prefix = output_prefix

    def rasterize(self, pdf_path: Path, output_dir: Path) -> list[Path]:
        try:
            convert_from_path(
                str(pdf_path),
                dpi=self.dpi,
                output_folder=str(output_dir),
                fmt="png",
                output_file=self.output_prefix,
                paths_only=True,
            )
        except (PDFInfoNotInstalledError, PDFPageCountError, PDFSyntaxError, OSError) as exc:
            raise ExternalToolFailure(f"pdftoppm could not rasterize {pdf_path.name}: {exc}") from exc

        pages = sorted(output_dir.glob("*.png"))
        if not pages:
            raise ExternalToolFailure(f"pdftoppm produced no page images for {pdf_path.name}.")
        return pages


class TesseractEngine:
    def __init__(self, languages: str = "eng+rus", config: str = ""):
        self.languages = languages
        self.config = config

    def recognize(self, image_path: Path, output_base: Path) -> Path:
        try:
            pytesseract.pytesseract.run_tesseract(
                str(image_path),
                str(output_base),
                extension="txt",
                lang=self.languages,
                config=self.config,
            )
        except (pytesseract.TesseractError, pytesseract.TesseractNotFoundError, OSError) as exc:
            raise ExternalToolFailure(f"tesseract failed on {image_path.name}: {exc}") from exc
        return output_base.with_name(f"{output_base.name}.txt")


def _read_sidecar(sidecar_path: Path) -> str:
    try:
        return sidecar_path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ExternalToolFailure(f"OCR output {sidecar_path.name} could not be read: {exc}") from exc


class OcrPipeline:
    def __init__(
        self,
        rasterizer: PageRasterizer,
        engine: TextRecognitionEngine,
        progress: ProgressPublisher,
        scratch_root: Path,
        retention: RetentionPolicy | None = None,
    ):
        self.rasterizer = rasterizer
        self.engine = engine
        self.progress = progress
        self.scratch_root = Path(scratch_root)
        self.retention = retention or KeepEverything()

    def _create_scratch_dir(self) -> Path:
        self.scratch_root.mkdir(parents=True, exist_ok=True)
        return Path(tempfile.mkdtemp(prefix="tess_", dir=self.scratch_root))

    async def _collect_pages(self, file_path: Path, scratch_dir: Path) -> list[Path]:
        if file_path.suffix.lower() in PAGINATED_EXTENSIONS:
            await self.progress.publish("ocr", "Converting PDF pages to images...")
            pages = await run_in_threadpool(self.rasterizer.rasterize, file_path, scratch_dir)
            return sorted(pages, key=lambda page: page.name)

        target = scratch_dir / file_path.name
        await run_in_threadpool(shutil.copyfile, file_path, target)
        return [target]

    async def run(self, file_path: Path) -> str:
        file_path = Path(file_path)
        scratch_dir: Path | None = None
        try:
            scratch_dir = self._create_scratch_dir()
            pages = await self._collect_pages(file_path, scratch_dir)

            full_text = ""
            for page in pages:
                await self.progress.publish("ocr", f"Tesseract OCR for {page.name}...")
                sidecar = await run_in_threadpool(self.engine.recognize, page, page.with_suffix(""))
                full_text += await run_in_threadpool(_read_sidecar, sidecar) + "\n"

            await self.progress.publish("ocr", "Tesseract OCR finished extracting text.")
            logger.info("OCR extracted %d characters from %d page(s) of %s", len(full_text), len(pages), file_path.name)
            return full_text
        except Exception:  # noqa: BLE001 - OCR failure degrades to empty text
            logger.exception("Tesseract OCR failed for %s", file_path.name)
            await self.progress.publish("error", "Tesseract OCR failed.")
            return ""
        finally:
            if scratch_dir is not None:
                self.retention.release_scratch(scratch_dir)
