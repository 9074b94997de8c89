from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Iterable

from doc_intake.errors import TaxonomyIOFailure

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TypeEntry:
    name: str
    description: str

    def to_dict(self) -> dict:
        return asdict(self)


DEFAULT_TYPES = (
    TypeEntry(name="report", description="Стандартный отчёт"),
    TypeEntry(name="invoice", description="Счёт на оплату"),
    TypeEntry(name="presentation", description="Презентация"),
)


def _normalize_entries(values: Iterable[object]) -> list[TypeEntry]:
    entries: list[TypeEntry] = []
    for value in values:
        if not isinstance(value, dict):
            continue
        name = value.get("name")
        if not isinstance(name, str) or not name:
            continue
        description = value.get("description")
        entries.append(
            TypeEntry(name=name, description=description if isinstance(description, str) else "")
        )
    return entries


def find_type(entries: Iterable[TypeEntry], name: str) -> TypeEntry | None:
    """Case-insensitive lookup used when reconciling classifier output."""
    wanted = name.lower()
    for entry in entries:
        if entry.name.lower() == wanted:
            return entry
    return None


class TaxonomyStore:
    """Flat JSON file holding the known document types, last write wins."""

    def __init__(self, path: Path, defaults: Iterable[TypeEntry] = DEFAULT_TYPES):
        self.path = Path(path)
        self.defaults = tuple(defaults)

    def ensure_seeded(self) -> None:
        if self.path.exists():
            return
        logger.info("Seeding taxonomy file %s with %d default types", self.path, len(self.defaults))
        self._write(list(self.defaults))

    def read_all(self) -> list[TypeEntry]:
        self.ensure_seeded()
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise TaxonomyIOFailure(f"Could not read taxonomy file {self.path}: {exc}") from exc

        if not isinstance(raw, list):
            raise TaxonomyIOFailure(f"Taxonomy file {self.path} must contain a JSON array.")
        return _normalize_entries(raw)

    def append_if_absent(self, name: str, description: str | None) -> list[TypeEntry]:
        # Exact, case-sensitive comparison; reconciliation is case-insensitive.
        entries = self.read_all()
        if any(entry.name == name for entry in entries):
            return entries

        entries.append(TypeEntry(name=name, description=description or ""))
        self._write(entries)
        logger.info("Added document type '%s' to taxonomy", name)
        return entries

    def _write(self, entries: list[TypeEntry]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(
                json.dumps([entry.to_dict() for entry in entries], indent=2, ensure_ascii=False),
                encoding="utf-8",
            )
        except OSError as exc:
            raise TaxonomyIOFailure(f"Could not write taxonomy file {self.path}: {exc}") from exc
