# dongne/domains/search/rag_engine.py
import google.generativeai as genai
from dongne.core.config import settings
from dongne.domains.search.intent import WeatherIntent
import logging
import asyncio
import json
import time
from typing import List

logger = logging.getLogger(__name__)

INTENT_LABELS = {
    "current": "현재 날씨",
    "hourly": "시간별 날씨",
    "daily": "일별 날씨",
}


class RAGEngine:
    """
    검색된 날씨 사실(문장)로 답변 생성
    Gemini 모델이 없거나 실패하면 문장을 그대로 엮은 템플릿 답변을 돌려줍니다.
    """

    def __init__(self, model=None, timeout: float = None):
        self.model = model
        self.timeout = timeout or settings.UPSTREAM_TIMEOUT_SECONDS

    @classmethod
    def from_settings(cls):
        if not settings.GEMINI_API_KEY:
            logger.info("ℹ️ GEMINI_API_KEY 없음: 템플릿 답변 모드")
            return cls(model=None)
        genai.configure(api_key=settings.GEMINI_API_KEY)
        model = genai.GenerativeModel(
            settings.GEMINI_CHAT_MODEL,
            generation_config={"response_mime_type": "application/json"}
        )
        return cls(model=model)

    async def generate_answer(self, query_text: str, intent: WeatherIntent, facts: List[str]) -> str:
        if not facts:
            return f"{intent.location}의 날씨 정보를 지금은 가져올 수 없습니다. 잠시 후 다시 시도해주세요."
        if self.model is None:
            return self.template_answer(intent, facts)

        start_time = time.time()
        context_text = "\n".join(f"- {fact}" for fact in facts)

        prompt = f"""
        당신은 동네 날씨 안내 도우미입니다.
        아래 [날씨 데이터]만 근거로 사용자의 질문에 짧고 친절하게 한국어로 답하세요.

        [사용자 질문]
        {query_text}

        [질문 분석]
        - 유형: {INTENT_LABELS.get(intent.type, intent.type)}
        - 날짜: {intent.date.isoformat()}
        - 위치: {intent.location}

        [날씨 데이터]
        {context_text}

        [절대 규칙]
        1. 데이터에 없는 수치를 지어내지 마세요.
        2. 반드시 아래 JSON Key 이름을 지키세요.

        [Target JSON Structure]
        {{
            "answer": "String"
        }}
        """

        try:
            response = await asyncio.wait_for(
                asyncio.to_thread(self.model.generate_content, prompt),
                timeout=self.timeout,
            )
            answer = json.loads(response.text)["answer"]
            duration = time.time() - start_time

            success_log = {
                "event": "GEMINI_SUCCESS",
                "target": query_text,
                "duration": f"{duration:.3f}s",
                "input_context_preview": context_text[:200] + "..." if len(context_text) > 200 else context_text,
                "output_response": answer
            }
            logger.info(json.dumps(success_log, ensure_ascii=False))
            return answer

        except Exception as e:
            duration = time.time() - start_time
            error_log = {
                "event": "GEMINI_FAILED",
                "target": query_text,
                "duration": f"{duration:.3f}s",
                "error_cause": str(e) or type(e).__name__,
                "input_context": context_text
            }
            logger.error(json.dumps(error_log, ensure_ascii=False))

            # Fallback 응답
            return self.template_answer(intent, facts)

    @staticmethod
    def template_answer(intent: WeatherIntent, facts: List[str]) -> str:
        label = INTENT_LABELS.get(intent.type, "날씨")
        lines = "\n".join(f"• {fact}" for fact in facts[:5])
        return f"📍 {intent.location} {label} 안내입니다.\n{lines}"
