# dongne/core/exceptions.py

"""
날씨 파이프라인 에러 분류

컴포넌트는 httpx / SQLAlchemy / Gemini 예외를 그대로 밖으로 던지지 않고,
아래 4가지 중 하나로 감싸서 던집니다. 호출자는 메시지 대신 kind로 분기합니다.
"""


class WeatherPipelineError(Exception):
    kind = "pipeline_error"

    def __init__(self, message: str = "", **context):
        super().__init__(message or self.kind)
        self.message = message or self.kind
        self.context = context


class QuotaExceeded(WeatherPipelineError):
    """레이트 리미터가 업스트림 호출을 거부한 경우"""
    kind = "quota_exceeded"

    def __init__(self, message: str = "", wait_seconds: float = 0.0, **context):
        super().__init__(message or "API 호출 한도를 초과했습니다.", **context)
        self.wait_seconds = wait_seconds


class UpstreamUnavailable(WeatherPipelineError):
    """네트워크 / HTTP / 타임아웃 / 응답 파싱 실패"""
    kind = "upstream_unavailable"

    def __init__(self, message: str = "", status_code: int = None, **context):
        super().__init__(message or "외부 API를 사용할 수 없습니다.", **context)
        self.status_code = status_code


class EmbeddingCorrupt(WeatherPipelineError):
    """파싱 불가 / 빈 벡터 / 차원 불일치 / norm 0 임베딩"""
    kind = "embedding_corrupt"


class PersistenceFailure(WeatherPipelineError):
    """캐시 또는 임베딩 저장소의 DB 읽기/쓰기 실패"""
    kind = "persistence_failure"
