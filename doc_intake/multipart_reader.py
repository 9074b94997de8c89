from __future__ import annotations

import io
import time
from dataclasses import dataclass, field
from typing import Iterable, Iterator

from python_multipart.exceptions import MultipartParseError
from python_multipart.multipart import MultipartParser, parse_options_header

from doc_intake.errors import MalformedRequest, NoFileInRequest

DEFAULT_UPLOAD_EXTENSION = ".pdf"


@dataclass
class MultipartPart:
    headers: list[tuple[bytes, bytes]] = field(default_factory=list)
    body: io.BytesIO = field(default_factory=io.BytesIO)

    def header(self, name: bytes) -> bytes | None:
        wanted = name.lower()
        for key, value in self.headers:
            if key == wanted:
                return value
        return None

    @property
    def disposition_options(self) -> dict[bytes, bytes]:
        _, options = parse_options_header(self.header(b"content-disposition") or b"")
        return options

    @property
    def filename(self) -> str | None:
        raw = self.disposition_options.get(b"filename")
        if raw is None:
            return None
        return raw.decode("utf-8", errors="replace")

    def read(self) -> bytes:
        return self.body.getvalue()


@dataclass(frozen=True)
class UploadedFile:
    filename: str
    content: bytes


class MultipartReader:
    """Incremental multipart/form-data reader built on python-multipart callbacks."""

    def __init__(self, content_type: str | None):
        _, params = parse_options_header(content_type or "")
        boundary = params.get(b"boundary")
        if not boundary:
            raise MalformedRequest("Content-Type header has no multipart boundary.")

        self.parts: list[MultipartPart] = []
        self._current = MultipartPart()
        self._header_name = b""
        self._header_value = b""
        self._parser = MultipartParser(
            boundary,
            {
                "on_part_begin": self._on_part_begin,
                "on_part_data": self._on_part_data,
                "on_part_end": self._on_part_end,
                "on_header_field": self._on_header_field,
                "on_header_value": self._on_header_value,
                "on_header_end": self._on_header_end,
            },
        )

    def _on_part_begin(self) -> None:
        self._current = MultipartPart()

    def _on_part_data(self, data: bytes, start: int, end: int) -> None:
        self._current.body.write(data[start:end])

    def _on_part_end(self) -> None:
        self.parts.append(self._current)

    def _on_header_field(self, data: bytes, start: int, end: int) -> None:
        self._header_name += data[start:end]

    def _on_header_value(self, data: bytes, start: int, end: int) -> None:
        self._header_value += data[start:end]

    def _on_header_end(self) -> None:
        self._current.headers.append((self._header_name.lower(), self._header_value))
        self._header_name = b""
        self._header_value = b""

    def feed(self, chunk: bytes) -> None:
        try:
            self._parser.write(chunk)
        except MultipartParseError as exc:
            raise MalformedRequest(f"Multipart body could not be parsed: {exc}") from exc

    def finish(self) -> list[MultipartPart]:
        try:
            self._parser.finalize()
        except MultipartParseError as exc:
            raise MalformedRequest(f"Multipart body could not be parsed: {exc}") from exc
        return self.parts


def iter_parts(chunks: Iterable[bytes], content_type: str | None) -> Iterator[MultipartPart]:
    reader = MultipartReader(content_type)
    for chunk in chunks:
        reader.feed(chunk)
    yield from reader.finish()


def _generated_filename() -> str:
    return f"upload_{int(time.time() * 1000)}{DEFAULT_UPLOAD_EXTENSION}"


def extract_uploaded_file(body: bytes, content_type: str | None) -> UploadedFile:
    """Return the first file part of a buffered multipart body."""
    for part in iter_parts([body], content_type):
        filename = part.filename
        if filename is None:
            continue
        return UploadedFile(filename=filename or _generated_filename(), content=part.read())

    raise NoFileInRequest("No file part found in the request.")
