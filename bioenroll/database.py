from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.orm import sessionmaker

from bioenroll.config import get_settings

settings = get_settings()

engine = create_async_engine(settings.database_url, echo=settings.database_echo)

AsyncSessionLocal = sessionmaker(
   bind=engine,
   class_=AsyncSession,
   expire_on_commit=False
)


async def get_db():
   async with AsyncSessionLocal() as session:
      try:
         yield session
      finally:
         await session.close()
