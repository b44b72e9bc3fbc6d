import asyncio
import logging
from typing import Awaitable, Callable, Tuple, Type, TypeVar

from digistore.domain.exceptions import TransientConflictError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def linear_backoff(base: float) -> Callable[[int], float]:
    """Пауза перед повтором: base * номер неудачной попытки (0.1, 0.2, ...)"""
    return lambda attempt: base * attempt


async def retry_on_conflict(
    operation: Callable[[int], Awaitable[T]],
    max_attempts: int,
    backoff: Callable[[int], float],
    retry_on: Tuple[Type[BaseException], ...] = (TransientConflictError,),
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
) -> T:
    """Выполняет operation(attempt) заново целиком при конфликте записи.
    После max_attempts неудач пробрасывает последнюю ошибку"""
    if max_attempts < 1:
        raise ValueError("max_attempts должен быть >= 1")

    for attempt in range(1, max_attempts + 1):
        try:
            return await operation(attempt)
        except retry_on as e:
            if attempt == max_attempts:
                logger.error(f"Попытки исчерпаны ({attempt}/{max_attempts}): {e}")
                raise
            delay = backoff(attempt)
            logger.info(f"Конфликт на попытке {attempt}/{max_attempts}, повтор через {delay:.2f} сек: {e}")
            await sleep(delay)
