from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Iterable, Protocol

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from starlette.concurrency import run_in_threadpool

from doc_intake.errors import MalformedModelOutput
from doc_intake.taxonomy_store import TypeEntry, find_type

CLASSIFICATION_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "type": {"type": "string", "minLength": 1},
        "summary": {"type": "string", "minLength": 10},
    },
    "required": ["type", "summary"],
}


class StructuredCompletionService(Protocol):
    def complete(self, model: str, prompt: str, schema: dict[str, Any]) -> Any:
        ...


class ClassificationPayloadModel(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: str = Field(min_length=1)
    summary: str = Field(min_length=10)


@dataclass(frozen=True)
class ClassificationResult:
    type: str
    summary: str


@dataclass(frozen=True)
class ReconciledClassification:
    type: str
    summary: str
    description: str | None
    is_new_type: bool

    def to_response(self) -> dict:
        return {
            "type": self.type,
            "summary": self.summary,
            "description": self.description,
            "isNewType": self.is_new_type,
        }


def build_classification_prompt(text: str, taxonomy: Iterable[TypeEntry]) -> str:
    types_for_prompt = "\n".join(f"{entry.name} — {entry.description}" for entry in taxonomy)
    return (
        "Known document types:\n"
        f"{types_for_prompt}\n\n"
        "Pick the matching type as a single word. If none of them fits, propose a new one.\n"
        "Write a short summary of the document (one paragraph).\n\n"
        "Document text:\n"
        f"{text}\n"
    )


def _unwrap_payload(response: Any) -> Any:
    if isinstance(response, dict) and isinstance(response.get("message"), dict):
        content = response["message"].get("content")
        return json.loads(content) if isinstance(content, str) else content
    if isinstance(response, (str, bytes)):
        return json.loads(response)
    return response


def parse_classification_response(response: Any) -> ClassificationResult:
    try:
        payload = _unwrap_payload(response)
    except json.JSONDecodeError as exc:
        raise MalformedModelOutput(f"Model response was not valid JSON: {exc}") from exc

    try:
        parsed = ClassificationPayloadModel.model_validate(payload)
    except ValidationError as exc:
        raise MalformedModelOutput(
            f"Model response does not match the classification schema: {exc.error_count()} error(s)."
        ) from exc

    return ClassificationResult(type=parsed.type.lower(), summary=parsed.summary)


def reconcile(result: ClassificationResult, taxonomy: Iterable[TypeEntry]) -> ReconciledClassification:
    found = find_type(taxonomy, result.type)
    return ReconciledClassification(
        type=result.type,
        summary=result.summary,
        description=found.description if found else None,
        is_new_type=found is None,
    )


class Classifier:
    def __init__(self, service: StructuredCompletionService):
        self.service = service

    async def classify(self, text: str, taxonomy: list[TypeEntry], model: str) -> ClassificationResult:
        prompt = build_classification_prompt(text, taxonomy)
        response = await run_in_threadpool(self.service.complete, model, prompt, CLASSIFICATION_SCHEMA)
        return parse_classification_response(response)
