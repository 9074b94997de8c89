from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)


class RetentionPolicy(Protocol):
    name: str

    def release_scratch(self, scratch_dir: Path) -> None:
        ...

    def release_upload(self, stored_path: Path) -> None:
        ...


@dataclass
class KeepEverything:
    """Uploads and OCR scratch directories stay on disk indefinitely."""

    name: str = "keep"

    def release_scratch(self, scratch_dir: Path) -> None:
        return None

    def release_upload(self, stored_path: Path) -> None:
        return None


@dataclass
class PurgeScratch:
    """Remove OCR scratch directories once their text has been read; keep uploads."""

    name: str = "purge-scratch"

    def release_scratch(self, scratch_dir: Path) -> None:
        shutil.rmtree(scratch_dir, ignore_errors=True)
        logger.debug("Removed OCR scratch directory %s", scratch_dir)

    def release_upload(self, stored_path: Path) -> None:
        return None


@dataclass
class PurgeAll(PurgeScratch):
    """Also remove the stored upload once its request has finished."""

    name: str = "purge-all"

    def release_upload(self, stored_path: Path) -> None:
        try:
            stored_path.unlink(missing_ok=True)
        except OSError as exc:
            logger.warning("Could not remove upload %s: %s", stored_path, exc)
            return
        logger.debug("Removed upload %s", stored_path)


_POLICIES = {
    "keep": KeepEverything,
    "purge-scratch": PurgeScratch,
    "purge-all": PurgeAll,
}


def list_retention_policies() -> list[str]:
    return list(_POLICIES)


def get_retention_policy(policy_name: str | None = None) -> RetentionPolicy:
    selected = policy_name or "keep"
    if selected in _POLICIES:
        return _POLICIES[selected]()
    raise ValueError(
        f"Unknown retention policy '{selected}'. "
        f"Available policies: {', '.join(list_retention_policies())}."
    )
