import logging
import os
import json
from logging.handlers import TimedRotatingFileHandler
from datetime import datetime

from dongne.core.config import settings

class JsonFormatter(logging.Formatter):
    def format(self, record):
        log_record = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        # 에러 발생 시 파일 위치와 상세 스택 정보 추가
        if record.levelno >= logging.ERROR:
            log_record["location"] = f"{record.pathname}:{record.lineno}"
            if record.exc_info:
                log_record["stack_trace"] = self.formatException(record.exc_info)
        return json.dumps(log_record, ensure_ascii=False)

def log_event(logger: logging.Logger, event: str, level: int = logging.INFO, **fields):
    """
    파이프라인 이벤트를 {"event": ..., ...} JSON 문자열로 기록합니다.
    예: log_event(logger, "CACHE_HIT", key="forecast:서울:hourly", tier="memory")
    """
    payload = {"event": event, **fields}
    logger.log(level, json.dumps(payload, ensure_ascii=False, default=str))

def setup_logging(log_dir: str = None, to_file: bool = None):
    log_dir = log_dir or settings.LOG_DIR
    to_file = settings.LOG_TO_FILE if to_file is None else to_file

    # 기본 로그 레벨 설정
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.INFO)

    # 중복 호출 시 핸들러가 쌓이지 않도록 방지
    if getattr(root_logger, "_dongne_configured", False):
        return
    root_logger._dongne_configured = True

    # [핵심] 노이즈 발생 라이브러리 로그 레벨을 ERROR로 상향 (INFO 로그 차단)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.ERROR)
    logging.getLogger("apscheduler").setLevel(logging.ERROR)
    logging.getLogger("httpx").setLevel(logging.ERROR)
    logging.getLogger("uvicorn.access").setLevel(logging.ERROR)
    logging.getLogger("uvicorn.error").setLevel(logging.ERROR)
    logging.getLogger("watchfiles").setLevel(logging.ERROR) # 리로더 로그 차단

    # 파일 핸들러 (운영용: 7일 보관)
    if to_file:
        os.makedirs(log_dir, exist_ok=True)
        file_handler = TimedRotatingFileHandler(
            filename=os.path.join(log_dir, "server.log"),
            when="midnight", interval=1, backupCount=7, encoding="utf-8"
        )
        file_handler.setFormatter(JsonFormatter())
        root_logger.addHandler(file_handler)

    # 콘솔 핸들러 (개발용)
    console_handler = logging.StreamHandler()
    console_handler.setFormatter(JsonFormatter())
    root_logger.addHandler(console_handler)
