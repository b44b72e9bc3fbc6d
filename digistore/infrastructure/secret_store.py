"""
Шифрование содержимого склада (ключи, аккаунты email:password, коды).

AES-256-GCM, на каждый вызов encrypt новый случайный nonce, который
хранится перед шифротекстом: nonce (12 байт) || ciphertext || tag (16 байт).
Ключ один на процесс и загружается при старте; без корректного ключа
приложение не запускается.
"""
import base64
import binascii
import logging
import os
from typing import Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from digistore.domain.exceptions import CorruptPayloadError, SecretStoreConfigError

logger = logging.getLogger(__name__)

KEY_LENGTH = 32
NONCE_LENGTH = 12
TAG_LENGTH = 16


def parse_key(raw: str) -> bytes:
    """Ключ: ровно 32 символа, 64 hex-символа или urlsafe base64 от 32 байт"""
    if not raw:
        raise SecretStoreConfigError("ENCRYPTION_KEY не задан")

    if len(raw) == KEY_LENGTH and len(raw.encode()) == KEY_LENGTH:
        return raw.encode()

    if len(raw) == KEY_LENGTH * 2:
        try:
            return bytes.fromhex(raw)
        except ValueError:
            pass

    try:
        key = base64.urlsafe_b64decode(raw.encode())
    except (binascii.Error, ValueError):
        key = b""
    if len(key) == KEY_LENGTH:
        return key

    raise SecretStoreConfigError(
        f"ENCRYPTION_KEY должен быть длиной {KEY_LENGTH} байт, получено {len(raw)} символов"
    )


class SecretStore:
    def __init__(self, key: Union[str, bytes]):
        if isinstance(key, str):
            key = parse_key(key)
        if len(key) != KEY_LENGTH:
            raise SecretStoreConfigError(f"Ключ должен быть {KEY_LENGTH} байт, получено {len(key)}")
        self._aesgcm = AESGCM(key)
        # сам ключ в логи не пишем
        logger.info("Secret store инициализирован")

    def encrypt(self, plaintext: Union[str, bytes]) -> bytes:
        if isinstance(plaintext, str):
            plaintext = plaintext.encode("utf-8")
        nonce = os.urandom(NONCE_LENGTH)
        return nonce + self._aesgcm.encrypt(nonce, plaintext, None)

    def decrypt(self, blob: bytes) -> bytes:
        if not isinstance(blob, (bytes, bytearray)) or len(blob) < NONCE_LENGTH + TAG_LENGTH:
            raise CorruptPayloadError("Некорректный формат зашифрованных данных")
        nonce, ciphertext = bytes(blob[:NONCE_LENGTH]), bytes(blob[NONCE_LENGTH:])
        try:
            return self._aesgcm.decrypt(nonce, ciphertext, None)
        except InvalidTag:
            raise CorruptPayloadError("Не удалось расшифровать: данные повреждены или ключ не совпадает")

    def decrypt_text(self, blob: bytes) -> str:
        plaintext = self.decrypt(blob)
        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError:
            raise CorruptPayloadError("Расшифрованные данные не являются текстом UTF-8")


def load_secret_store(raw_key: str) -> SecretStore:
    """Вызывается при старте приложения: без ключа процесс не стартует"""
    try:
        return SecretStore(raw_key)
    except SecretStoreConfigError as e:
        logger.critical(f"Не удалось загрузить ключ шифрования: {e}")
        raise
