# dongne/domains/search/embedding_client.py

import asyncio
import json
import logging
import time
from typing import List

import google.generativeai as genai

from dongne.core.config import settings
from dongne.core.exceptions import UpstreamUnavailable

logger = logging.getLogger(__name__)


class GeminiEmbedder:
    """
    Gemini 임베딩 클라이언트
    - 문서 저장용: task_type="retrieval_document"
    - 검색 질의용: task_type="retrieval_query"
    SDK 가 동기 함수라서 to_thread 로 감싸고, 타임아웃을 겁니다.
    """

    def __init__(self, api_key: str = None, model: str = None, timeout: float = None):
        genai.configure(api_key=api_key or settings.GEMINI_API_KEY)
        self.model = model or settings.GEMINI_EMBEDDING_MODEL
        self.timeout = timeout or settings.UPSTREAM_TIMEOUT_SECONDS

    async def embed(self, text: str, *, is_query: bool = False) -> List[float]:
        task_type = "retrieval_query" if is_query else "retrieval_document"
        result = await self._call(text, task_type)
        return list(result["embedding"])

    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        if not texts:
            return []
        # content 에 리스트를 넘기면 embedding 도 리스트의 리스트로 돌아옴
        result = await self._call(texts, "retrieval_document")
        vectors = result["embedding"]
        if len(vectors) != len(texts):
            raise UpstreamUnavailable(f"임베딩 개수 불일치: {len(vectors)} != {len(texts)}")
        return [list(v) for v in vectors]

    async def _call(self, content, task_type: str):
        start_time = time.time()
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(genai.embed_content, model=self.model, content=content, task_type=task_type),
                timeout=self.timeout,
            )
        except Exception as e:
            error_log = {
                "event": "EMBEDDING_FAILED",
                "task_type": task_type,
                "items": len(content) if isinstance(content, list) else 1,
                "duration": f"{time.time() - start_time:.3f}s",
                "error_cause": str(e) or type(e).__name__,
            }
            logger.error(json.dumps(error_log, ensure_ascii=False))
            raise UpstreamUnavailable(f"임베딩 생성 실패: {e}") from e
