"""FastAPI server exposing reindex and find-related endpoints."""

from __future__ import annotations

import logging
import time

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from blockseek import config
from blockseek.api.task_manager import TaskBusyError, TaskManager
from blockseek.service import RelatedContentService
from blockseek.storage.vector_store import StoreNotInitializedError

# Configure logging on import, before anything else logs
logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL, logging.INFO),
    format="%(asctime)s %(levelname)-5s [%(name)s] %(message)s",
    datefmt="%H:%M:%S",
)

logger = logging.getLogger(__name__)

app = FastAPI(title="Blockseek", description="Related-content search over markdown blocks")

_task_manager = TaskManager()

# Lazy-initialized service (created on first request)
_service: RelatedContentService | None = None


def _get_service() -> RelatedContentService:
    global _service
    if _service is None:
        logger.info("Initializing service...")
        t0 = time.perf_counter()
        service = RelatedContentService()
        service.start()
        _service = service
        logger.info("Service ready (%.2fs)", time.perf_counter() - t0)
    return _service


class ReindexRequest(BaseModel):
    reset: bool = False


class ReindexResponse(BaseModel):
    task_id: str


class RelatedRequest(BaseModel):
    document_path: str
    line: int = Field(ge=1)
    k: int = Field(default=10, ge=1, le=100)


class MetadataResponse(BaseModel):
    document_path: str
    key: str
    text: str


class RelatedResult(BaseModel):
    id: int
    score: float
    metadata: MetadataResponse


@app.get("/health")
def health():
    return {"status": "ok", "reindexing": _task_manager.busy}


@app.post("/reindex", response_model=ReindexResponse)
def reindex(req: ReindexRequest | None = None):
    reset = req.reset if req is not None else False
    logger.info("POST /reindex reset=%s", reset)
    service = _get_service()
    try:
        task_id = _task_manager.submit("reindex", _run_reindex, service=service, reset=reset)
    except TaskBusyError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return ReindexResponse(task_id=task_id)


def _run_reindex(service: RelatedContentService, reset: bool, on_progress=None) -> dict:
    return service.reindex(reset=reset, on_progress=on_progress).to_dict()


@app.get("/tasks/{task_id}")
def task_status(task_id: str):
    status = _task_manager.get_status(task_id)
    if status is None:
        raise HTTPException(status_code=404, detail=f"Unknown task {task_id}")
    return status


@app.post("/related", response_model=list[RelatedResult])
def related(req: RelatedRequest):
    logger.info("POST /related %s:%d k=%d", req.document_path, req.line, req.k)
    t0 = time.perf_counter()
    try:
        results = _get_service().find_related(req.document_path, req.line, req.k)
    except StoreNotInitializedError as e:
        raise HTTPException(status_code=503, detail=str(e))
    except Exception as e:
        logger.exception("Related search error after %.2fs", time.perf_counter() - t0)
        raise HTTPException(status_code=500, detail=str(e))
    return [
        RelatedResult(
            id=r.id,
            score=r.score,
            metadata=MetadataResponse(
                document_path=r.metadata.document_path,
                key=r.metadata.key,
                text=r.metadata.text,
            ),
        )
        for r in results
    ]
