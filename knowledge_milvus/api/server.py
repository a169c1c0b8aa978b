from typing import List

from dotenv import load_dotenv
from fastapi import APIRouter, Depends, FastAPI, HTTPException
from pydantic import BaseModel
from pymilvus import MilvusException

from ..config import MilvusConfig, get_settings
from ..logging_utils import emit_metric, get_logger, span
from ..rag.models import Section, Similarity
from ..rag.vector_backends import MilvusBackend, VectorBackend

logger = get_logger("api")

app = FastAPI(title="Knowledge Milvus")
api_router = APIRouter()

# --- 全局单例缓存 ---
GLOBAL: dict[str, object] = {}


def get_backend(settings: MilvusConfig = Depends(get_settings)) -> VectorBackend:
    backend = GLOBAL.get("backend")
    if backend is None:
        try:
            backend = MilvusBackend(settings)
        except MilvusException as e:
            logger.error(f"backend init failed: {e}")
            raise HTTPException(502, f"milvus unavailable: {e}")
        except ValueError as e:
            logger.error(f"backend misconfigured: {e}")
            raise HTTPException(500, f"backend misconfigured: {e}")
        GLOBAL["backend"] = backend
    return backend  # type: ignore[return-value]


@app.on_event("startup")
async def _startup_init():  # pragma: no cover
    # Load environment variables here (avoid side-effects at import time)
    load_dotenv()
    logger.info("startup: backend will connect on first request")


class InsertRequest(BaseModel):
    sections: List[Section]
    start_id: int = 0


class QueryRequest(BaseModel):
    embedding: List[float]
    top_k: int = 5


class QueryResponse(BaseModel):
    similarities: List[Similarity]


@api_router.get("/health")
async def health():
    return {"status": "ok"}


@api_router.post("/sections")
def insert_sections(req: InsertRequest, backend: VectorBackend = Depends(get_backend)):
    rejected = None
    try:
        with span("api_insert", logger, rows=len(req.sections)):
            try:
                inserted = backend.insert(req.sections, start_id=req.start_id)
            except ValueError as e:
                rejected = e
    except MilvusException as e:
        raise HTTPException(502, str(e))
    if rejected is not None:
        logger.warning(f"insert rejected: {rejected}")
        raise HTTPException(422, str(rejected))
    emit_metric("api_insert", rows=len(req.sections), inserted=inserted)
    return {"inserted": inserted}


@api_router.post("/query", response_model=QueryResponse)
def query(req: QueryRequest, backend: VectorBackend = Depends(get_backend)):
    rejected = None
    try:
        with span("api_query", logger, top_k=req.top_k):
            try:
                sims = backend.query(req.embedding, req.top_k)
            except ValueError as e:
                rejected = e
    except MilvusException as e:
        raise HTTPException(502, str(e))
    if rejected is not None:
        logger.warning(f"query rejected: {rejected}")
        raise HTTPException(422, str(rejected))
    logger.info(f"query top_k={req.top_k} hits={len(sims)}")
    emit_metric("api_query", top_k=req.top_k, hits=len(sims))
    return QueryResponse(similarities=sims)


app.include_router(api_router, prefix="/api")

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
