# dongne/core/scheduler.py

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from dongne.core.config import settings
from dongne.core.exceptions import PersistenceFailure
from dongne.utils.timezone import KST

logger = logging.getLogger(__name__)


# ====================================================
# [Task 1] 0, 6, 12, 18시 - 사용자 위치별 날씨 수집
# ====================================================
async def collect_weather_job(pipeline):
    try:
        summary = await pipeline.collector.collect_for_all_users()
    except PersistenceFailure as e:
        logger.error(f"❌ [Weather Job] 수집 대상 조회 실패: {e.message}")
        return None
    logger.info(
        f"🏁 [Weather Job] 총 {summary['total_users']}명 - 성공: {summary['success_count']}, 실패: {summary['failure_count']}"
    )
    return summary


# ====================================================
# [Task 2] 매시 30분 - 만료된 캐시 정리
# ====================================================
async def cleanup_cache_job(pipeline):
    return await pipeline.cache.cleanup_expired()


# ====================================================
# [Task 3] 03:00 - 임베딩 중복 정리 + 오래된 임베딩 삭제
# ====================================================
async def maintain_embeddings_job(pipeline):
    try:
        removed_duplicates = await pipeline.embedding_store.remove_duplicates()
        removed_old = await pipeline.embedding_store.cleanup_old_embeddings(settings.EMBEDDING_RETENTION_DAYS)
    except PersistenceFailure as e:
        logger.error(f"❌ [Embedding Job] 임베딩 정리 실패: {e.message}")
        return None
    logger.info(f"🗑️ [Embedding Job] 중복 {removed_duplicates}개, 오래된 임베딩 {removed_old}개 삭제")
    return {"duplicates": removed_duplicates, "old": removed_old}


def create_scheduler(pipeline) -> AsyncIOScheduler:
    scheduler = AsyncIOScheduler(timezone=KST)

    hours = ",".join(str(h) for h in settings.COLLECT_HOURS)
    scheduler.add_job(collect_weather_job, 'cron', hour=hours, minute=0, args=[pipeline], id="collect_weather")
    scheduler.add_job(cleanup_cache_job, 'cron', minute=30, args=[pipeline], id="cleanup_cache")
    scheduler.add_job(maintain_embeddings_job, 'cron', hour=3, minute=0, args=[pipeline], id="maintain_embeddings")

    return scheduler
