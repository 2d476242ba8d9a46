# dongne/middleware.py
import time
import logging
import json
from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger("api_monitor")

class APIAccessLoggerMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        start_time = time.time()
        url = str(request.url)
        method = request.method

        try:
            # 요청 처리 실행
            response = await call_next(request)

            duration = time.time() - start_time

            # 400번대 이상 에러 (클라이언트 과실, 호출 한도, 외부 장애 등)
            if response.status_code >= 400:
                error_log = {
                    "event": "HTTP_ERROR",
                    "status": response.status_code,
                    "method": method,
                    "url": url,
                    "duration": f"{duration:.4f}s"
                }
                # 파이프라인 예외 핸들러가 남긴 에러 종류 (quota_exceeded, upstream_unavailable 등)
                error_kind = getattr(request.state, "error_kind", None)
                if error_kind:
                    error_log["kind"] = error_kind
                if "retry-after" in response.headers:
                    error_log["retry_after"] = response.headers["retry-after"]
                logger.warning(json.dumps(error_log, ensure_ascii=False))
            else:
                # 정상 처리
                logger.info(f"SUCCESS | {method} {url} | Time: {duration:.4f}s")

            return response

        except Exception as e:
            # 시스템 에러 발생 시 여기서 로그를 남기고 '종결'합니다.
            duration = time.time() - start_time

            critical_log = {
                "event": "SYSTEM_CRITICAL_ERROR",
                "method": method,
                "url": url,
                "error_type": type(e).__name__,
                "error_message": str(e), # 오류의 명확한 원인
                "duration": f"{duration:.4f}s"
            }
            logger.error(json.dumps(critical_log, ensure_ascii=False), exc_info=True)

            # 예외를 다시 raise하지 않고, 500 응답을 리턴하여 Uvicorn의 중복 로그 방지
            return JSONResponse(
                status_code=500,
                content={"status": "error", "message": "Internal Server Error", "support_id": f"{time.time()}"}
            )
