"""Подключение к базе данных"""
import uuid
from typing import Tuple
from sqlalchemy.ext.asyncio import create_async_engine, AsyncEngine, async_sessionmaker, AsyncSession
from sqlalchemy.orm import declarative_base
from config import Settings

# Базовый класс для моделей
Base = declarative_base()


def generate_id() -> str:
    """Сгенерировать идентификатор записи"""
    return str(uuid.uuid4())


def create_session_maker(settings: Settings) -> Tuple[AsyncEngine, async_sessionmaker[AsyncSession]]:
    """Создать движок и фабрику сессий"""
    engine = create_async_engine(
        settings.database_url,
        echo=False,
        future=True
    )
    session_maker = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False
    )
    return engine, session_maker


async def init_models(engine: AsyncEngine) -> None:
    """Создать таблицы"""
    # Регистрируем все модели в метаданных
    import database.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
