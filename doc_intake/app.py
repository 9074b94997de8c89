from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Protocol

from pydantic import BaseModel

from fastapi import APIRouter, Depends, FastAPI, Request, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from starlette.requests import HTTPConnection

from doc_intake.classification import Classifier, StructuredCompletionService
from doc_intake.config import Settings, load_settings
from doc_intake.llm_provider import OllamaClient
from doc_intake.ocr import OcrPipeline, PageRasterizer, PdfToPpmRasterizer, TesseractEngine, TextRecognitionEngine
from doc_intake.orchestrator import IntakeOrchestrator
from doc_intake.progress import ProgressBroadcaster
from doc_intake.retention import get_retention_policy
from doc_intake.taxonomy_store import TaxonomyStore
from doc_intake.text_extraction import (
    DirectExtractionAdapter,
    TextExtractionRouter,
    TextExtractor,
    get_extraction_status,
)

logger = logging.getLogger(__name__)


class ModelCatalog(Protocol):
    def list_models(self) -> list[str]:
        ...


@dataclass
class IntakeServices:
    settings: Settings
    progress: ProgressBroadcaster
    taxonomy: TaxonomyStore
    orchestrator: IntakeOrchestrator
    model_catalog: ModelCatalog

    def startup(self) -> None:
        self.settings.upload_dir.mkdir(parents=True, exist_ok=True)
        self.taxonomy.ensure_seeded()

    async def shutdown(self) -> None:
        await self.progress.close()


def build_services(
    settings: Settings,
    *,
    rasterizer: PageRasterizer | None = None,
    engine: TextRecognitionEngine | None = None,
    direct: TextExtractor | None = None,
    completion: StructuredCompletionService | None = None,
    model_catalog: ModelCatalog | None = None,
) -> IntakeServices:
    progress = ProgressBroadcaster()
    retention = get_retention_policy(settings.retention)
    taxonomy = TaxonomyStore(settings.types_file)
    ollama = OllamaClient(settings.ollama_base_url, timeout=settings.ollama_timeout_seconds)

    ocr = OcrPipeline(
        rasterizer=rasterizer or PdfToPpmRasterizer(),
        engine=engine or TesseractEngine(languages=settings.ocr_languages),
        progress=progress,
        scratch_root=settings.upload_dir,
        retention=retention,
    )
    router = TextExtractionRouter(ocr=ocr, direct=direct or DirectExtractionAdapter(), progress=progress)
    orchestrator = IntakeOrchestrator(
        router=router,
        classifier=Classifier(completion or ollama),
        taxonomy=taxonomy,
        progress=progress,
        upload_dir=settings.upload_dir,
        snippet_chars=settings.snippet_chars,
        retention=retention,
    )
    return IntakeServices(
        settings=settings,
        progress=progress,
        taxonomy=taxonomy,
        orchestrator=orchestrator,
        model_catalog=model_catalog or ollama,
    )


def get_services(connection: HTTPConnection) -> IntakeServices:
    return connection.app.state.services


class ConfirmTypeRequest(BaseModel):
    type: str
    description: str | None = None


router = APIRouter()


@router.get("/health")
def health_check():
    return {"status": "ok"}


@router.get("/extraction/status")
def extraction_status():
    return get_extraction_status().to_dict()


@router.get("/models")
def list_models(services: IntakeServices = Depends(get_services)):
    try:
        models = services.model_catalog.list_models()
    except Exception as exc:  # noqa: BLE001
        logger.warning("Could not list models: %s", exc)
        return JSONResponse(
            status_code=500,
            content={"error": "Could not fetch the model list from Ollama."},
        )
    return {"models": models}


@router.post("/upload")
async def upload_document(
    request: Request,
    model: str | None = None,
    services: IntakeServices = Depends(get_services),
):
    try:
        body = await request.body()
        result = await services.orchestrator.handle_upload(
            body,
            request.headers.get("content-type"),
            model or services.settings.default_model,
        )
    except Exception:  # noqa: BLE001
        logger.exception("Upload failed before processing")
        await services.progress.publish("error", "File upload failed.")
        return JSONResponse(status_code=500, content={"error": "File upload failed."})

    if result.status != "success":
        return JSONResponse(status_code=result.status_code, content=result.response_body())
    return result.response_body()


@router.post("/confirm-type")
def confirm_type(request: ConfirmTypeRequest, services: IntakeServices = Depends(get_services)):
    try:
        entries = services.taxonomy.append_if_absent(request.type, request.description)
    except Exception:  # noqa: BLE001
        logger.exception("Could not store document type '%s'", request.type)
        return JSONResponse(status_code=500, content={"error": "Could not store the document type."})
    return {"success": True, "types": [entry.to_dict() for entry in entries]}


@router.websocket("/ocr-progress")
async def ocr_progress(websocket: WebSocket, services: IntakeServices = Depends(get_services)):
    await websocket.accept()
    observer = services.progress.attach(websocket)
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
    finally:
        services.progress.detach(observer)


@asynccontextmanager
async def lifespan(app: FastAPI):
    services: IntakeServices = app.state.services
    services.startup()
    yield
    await services.shutdown()


def create_app(settings: Settings | None = None, services: IntakeServices | None = None) -> FastAPI:
    services = services or build_services(settings or load_settings())

    app = FastAPI(title="Document Intake API", lifespan=lifespan)
    app.state.services = services
    app.add_middleware(
        CORSMiddleware,
        allow_origins=services.settings.cors_allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(router)

    if services.settings.static_dir.is_dir():
        app.mount("/", StaticFiles(directory=services.settings.static_dir, html=True), name="static")
    return app


app = create_app()


def main() -> None:
    import uvicorn

    settings = load_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
