# dongne/domains/search/router.py

from fastapi import APIRouter, Depends

from dongne.core.pipeline import WeatherPipeline, get_pipeline
from dongne.domains.search.schemas import WeatherQueryRequest, WeatherQueryResponse

router = APIRouter()


@router.post("/query", response_model=WeatherQueryResponse)
async def query_weather(body: WeatherQueryRequest, pipeline: WeatherPipeline = Depends(get_pipeline)):
    """자연어 날씨 질의 (벡터 검색 또는 실시간 예보로 답변)"""
    return await pipeline.rag_service.process_query(body)


@router.post("/embeddings/dedup")
async def remove_duplicate_embeddings(pipeline: WeatherPipeline = Depends(get_pipeline)):
    removed = await pipeline.embedding_store.remove_duplicates()
    return {"status": "success", "removed": removed}


@router.post("/embeddings/cleanup")
async def cleanup_old_embeddings(days: int = None, pipeline: WeatherPipeline = Depends(get_pipeline)):
    removed = await pipeline.embedding_store.cleanup_old_embeddings(days)
    return {"status": "success", "removed": removed}


@router.get("/embeddings/stats")
async def get_embedding_stats(pipeline: WeatherPipeline = Depends(get_pipeline)):
    return await pipeline.embedding_store.get_stats()
