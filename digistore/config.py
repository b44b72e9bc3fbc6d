import os
from dotenv import load_dotenv

load_dotenv()


class Settings:
    # Database
    POSTGRES_CONNECTION_STRING: str = os.getenv("POSTGRES_CONNECTION_STRING", "")

    # API
    API_TOKEN: str = os.getenv("API_TOKEN", "")

    # Шифрование содержимого склада (32 байта)
    ENCRYPTION_KEY: str = os.getenv("ENCRYPTION_KEY", "")

    # Payments (Stripe)
    PAYMENTS_BASE_URL: str = os.getenv("PAYMENTS_BASE_URL", "https://api.stripe.com")
    STRIPE_SECRET_KEY: str = os.getenv("STRIPE_SECRET_KEY", "")
    PAYMENT_TIMEOUT: float = float(os.getenv("PAYMENT_TIMEOUT", "10.0"))
    PAYMENTS_CURRENCY: str = os.getenv("PAYMENTS_CURRENCY", "myr")

    # Kafka
    KAFKA_BOOTSTRAP_SERVERS: str = os.getenv("KAFKA_BOOTSTRAP_SERVERS", "kafka.kafka.svc.cluster.local:9092")
    KAFKA_TOPIC: str = os.getenv("KAFKA_TOPIC", "digistore.order-events")

    # Цены
    TAX_RATE: str = os.getenv("TAX_RATE", "0.06")
    PRICE_TOLERANCE: str = os.getenv("PRICE_TOLERANCE", "0.01")

    # Резервирование
    ALLOCATION_MAX_ATTEMPTS: int = int(os.getenv("ALLOCATION_MAX_ATTEMPTS", "3"))
    ALLOCATION_BACKOFF_BASE: float = float(os.getenv("ALLOCATION_BACKOFF_BASE", "0.1"))
    TRANSACTION_TIMEOUT: float = float(os.getenv("TRANSACTION_TIMEOUT", "15.0"))

    @property
    def DATABASE_URL(self) -> str:
        """Асинхронный URL для приложения"""
        return self.POSTGRES_CONNECTION_STRING.replace("postgres://", "postgresql+asyncpg://")

    @property
    def SYNC_DATABASE_URL(self) -> str:
        """Синхронный URL для Alembic"""
        return self.POSTGRES_CONNECTION_STRING.replace("postgres://", "postgresql://")


settings = Settings()
