# dongne/core/database.py

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base
from dongne.core.config import settings

# 1. 비동기 엔진 생성 (echo=True는 쿼리 로그를 출력해줍니다)
engine = create_async_engine(settings.DATABASE_URL, echo=False)

# 2. 비동기 세션 팩토리
# 파이프라인 컴포넌트에는 이 팩토리를 생성자로 주입합니다. (테스트에서는 별도 팩토리 사용)
AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False
)

# 3. 모델들이 상속받을 Base 클래스
Base = declarative_base()
