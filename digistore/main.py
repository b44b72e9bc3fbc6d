import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI

from digistore.config import settings
from digistore.database import engine
from digistore.infrastructure.db_schema import metadata
from digistore.infrastructure.secret_store import load_secret_store
from digistore.presentation.api import router

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Управление жизненным циклом приложения"""
    # 1. Без ключа шифрования сервис не стартует
    app.state.secret_store = load_secret_store(settings.ENCRYPTION_KEY)

    # 2. Создаем таблицы
    if engine is not None:
        async with engine.begin() as conn:
            await conn.run_sync(metadata.create_all)
        logger.info("Таблицы созданы")

    yield

    logger.info("Приложение останавливается...")
    if engine is not None:
        await engine.dispose()


app = FastAPI(
    title="Digistore",
    description="Резервирование и выдача цифровых товаров",
    version="1.0.0",
    lifespan=lifespan
)

app.include_router(router, prefix="/api")


@app.get("/")
async def root():
    return {"message": "Digistore работает"}


@app.get("/health")
async def health():
    return {"status": "healthy"}
