# dongne/main.py
import logging
from fastapi import FastAPI, Request, HTTPException
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError # 데이터 검증
from fastapi.middleware.cors import CORSMiddleware

from dongne.core.config import settings
from dongne.core.exceptions import PersistenceFailure, QuotaExceeded, UpstreamUnavailable, WeatherPipelineError
from dongne.middleware import APIAccessLoggerMiddleware

from dongne.core.lifespan import lifespan

# 라우터 임포트
from dongne.domains.weather.router import router as weather_router, cron_router
from dongne.domains.search.router import router as search_router

logger = logging.getLogger("api_monitor")

app = FastAPI(
    title=settings.PROJECT_NAME,
    description="동네 날씨: 2단계 캐시 + 호출 한도 관리 + 임베딩 검색 기반 날씨 API",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS 설정
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(
    APIAccessLoggerMiddleware,
)

app.include_router(weather_router, prefix="/api/weather", tags=["Weather"])
app.include_router(search_router, prefix="/api/weather", tags=["Weather RAG"])
app.include_router(cron_router, prefix="/api/cron", tags=["Cron"])


@app.get("/")
def health_check():
    return {"status": "ok", "message": "dongne weather server is running"}


# ==========================================================
# 전역 에러 핸들러 설정
# ==========================================================

# 1. 호출 한도 초과 (429)
@app.exception_handler(QuotaExceeded)
async def quota_exceeded_handler(request: Request, exc: QuotaExceeded):
    request.state.error_kind = exc.kind
    logger.warning(f"⚠️ QUOTA_EXCEEDED | {request.url} | wait={exc.wait_seconds:.0f}s")
    return JSONResponse(
        status_code=429,
        content={
            "status": "fail",
            "message": "외부 API 호출 한도를 초과했습니다. 잠시 후 다시 시도해주세요.",
            "kind": exc.kind,
            "retry_after": int(exc.wait_seconds),
        },
        headers={"Retry-After": str(max(1, int(exc.wait_seconds)))},
    )


# 2. 외부 API / DB 장애 (503)
@app.exception_handler(UpstreamUnavailable)
@app.exception_handler(PersistenceFailure)
async def unavailable_handler(request: Request, exc: WeatherPipelineError):
    request.state.error_kind = exc.kind
    logger.error(f"❌ {exc.kind.upper()} | {request.url} | {exc.message}")
    return JSONResponse(
        status_code=503,
        content={
            "status": "error",
            "message": "날씨 데이터를 일시적으로 사용할 수 없습니다.",
            "kind": exc.kind,
        },
    )


# 3. 예상치 못한 시스템 에러 (500 Internal Server Error)
# 사용자에게는 "잠시 후 다시 시도해주세요"라고 말하고, 내부 로그에는 진짜 에러 내용을 남깁니다.
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"🛑 [System Error] {request.url} : {str(exc)}", exc_info=exc)
    return JSONResponse(
        status_code=500,
        content={
            "status": "error",
            "message": "서버 내부 오류가 발생했습니다. 관리자에게 문의해주세요.",
            "path": str(request.url)
        },
    )


# 4. 우리가 의도한 에러 (HTTPException)
@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "status": "fail",
            "message": exc.detail,
            "code": exc.status_code
        },
        headers=exc.headers,
    )


# 5. 데이터 형식이 틀렸을 때 (Validation Error)
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    # 운영자 로그에 상세 원인 기록
    error_details = exc.errors()
    logger.error(f"❌ VALIDATION_ERROR | {request.url} | Details: {error_details}")

    return JSONResponse(
        status_code=422,
        content={
            "status": "fail",
            "message": "입력 값이 올바르지 않습니다.",
            "details": jsonable_errors(error_details)
        },
    )


def jsonable_errors(errors):
    # pydantic v2 의 ctx 에는 예외 객체가 들어 있을 수 있어 문자열로 변환
    return [
        {**err, "ctx": {k: str(v) for k, v in err["ctx"].items()}} if "ctx" in err else err
        for err in errors
    ]
