import asyncio
import json
import logging
import os

from fastapi import FastAPI, File, HTTPException, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse

from conciliador.api_keys import gemini_credentials
from conciliador.errors import MissingInputError, UnparsableFileError, UnreadableFileError
from conciliador.logic.aggregator import present_groups
from conciliador.models import DatasetStatus, ProcessRequest, ReconciliationResponse, UploadResponse
from conciliador.parser import parse_spreadsheet
from conciliador.service import SLOT_LABELS, SLOTS, ReconciliationService, RunState

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Conciliador de Dados de Vendas API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

service = ReconciliationService()


def _to_response(state: RunState) -> ReconciliationResponse:
    return ReconciliationResponse(
        mode=state.mode,
        satisfaction_results=state.result.satisfaction_results,
        resend_groups=present_groups(state.result.resend_groups),
        has_results=state.result.has_results,
        error=state.error,
    )


def _dataset_status() -> DatasetStatus:
    return DatasetStatus(
        reference=len(service.datasets["reference"]),
        survey=len(service.datasets["survey"]),
        resend=len(service.datasets["resend"]),
        can_process=service.can_process,
        missing=service.missing_datasets(),
    )


@app.get("/health")
async def health():
    return {"status": "healthy"}


@app.get("/config/ai")
async def ai_config():
    """Masked credential status and the configured model."""
    return {
        "model": service.config.ai.model,
        "use_ai_default": service.config.reconcile.use_ai_default,
        "credential": gemini_credentials.status().model_dump(),
    }


@app.post("/upload/{slot}", response_model=UploadResponse)
async def upload_dataset(slot: str, file: UploadFile = File(...)):
    """Parse one spreadsheet into its dataset slot.

    A parse failure only affects this slot; datasets already loaded in the
    other slots are kept.
    """
    if slot not in SLOTS:
        raise HTTPException(status_code=404, detail=f"Unknown slot '{slot}'. Must be one of: {list(SLOTS)}")

    file_bytes = await file.read()
    try:
        rows = parse_spreadsheet(file_bytes, file.filename or "")
    except (UnreadableFileError, UnparsableFileError) as e:
        logger.warning(f"Upload for slot '{slot}' rejected: {e.message}")
        raise HTTPException(status_code=400, detail=e.message)

    service.set_dataset(slot, rows)
    return UploadResponse(slot=slot, filename=file.filename or "", rows=len(rows))


@app.get("/datasets", response_model=DatasetStatus)
async def datasets():
    return _dataset_status()


@app.post("/process", response_model=ReconciliationResponse)
async def process(request: ProcessRequest):
    try:
        state = await service.process(use_ai=request.use_ai)
    except MissingInputError as e:
        raise HTTPException(status_code=400, detail=e.message)
    return _to_response(state)


@app.get("/results", response_model=ReconciliationResponse)
async def results():
    return _to_response(service.state)


@app.post("/process/stream")
async def process_stream(request: ProcessRequest):
    """Run a reconciliation, streaming progress via Server-Sent Events.

    SSE Event Types:
    - progress: human-readable status ("Analisando reenvio 2 de 7...")
    - complete: final ReconciliationResponse
    - error: preconditions failed (missing datasets)
    """
    missing = service.missing_datasets()

    async def generate():
        if missing:
            detail = MissingInputError(SLOT_LABELS[slot] for slot in missing).message
            yield f"data: {json.dumps({'type': 'error', 'detail': detail})}\n\n"
            return

        queue: asyncio.Queue = asyncio.Queue()
        task = asyncio.create_task(
            service.process(use_ai=request.use_ai, progress=queue.put_nowait)
        )
        while not task.done() or not queue.empty():
            try:
                message = await asyncio.wait_for(queue.get(), timeout=0.2)
            except asyncio.TimeoutError:
                continue
            yield f"data: {json.dumps({'type': 'progress', 'detail': message})}\n\n"

        try:
            state = task.result()
        except MissingInputError as e:
            yield f"data: {json.dumps({'type': 'error', 'detail': e.message})}\n\n"
            return
        yield f"data: {json.dumps({'type': 'complete', 'response': _to_response(state).model_dump()})}\n\n"

    return StreamingResponse(generate(), media_type="text/event-stream")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
