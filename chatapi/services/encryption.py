from __future__ import annotations

import base64
import hashlib
from functools import lru_cache

from cryptography.fernet import Fernet, InvalidToken

from chatapi.logging_config import logger
from chatapi.settings import settings


class SecretDecryptionError(RuntimeError):
    """Raised when a stored secret cannot be decrypted with the current SECRET_KEY."""


@lru_cache(maxsize=4)
def _fernet_for(secret_key: str) -> Fernet:
    # Fernet 需要 32 字节 urlsafe base64 key，由 SECRET_KEY 派生
    digest = hashlib.sha256(secret_key.encode("utf-8")).digest()
    return Fernet(base64.urlsafe_b64encode(digest))


def encrypt_secret(value: str) -> bytes:
    return _fernet_for(settings.secret_key).encrypt(value.encode("utf-8"))


def decrypt_secret(token: bytes | str) -> str:
    if isinstance(token, str):
        token = token.encode("utf-8")
    try:
        return _fernet_for(settings.secret_key).decrypt(token).decode("utf-8")
    except InvalidToken as exc:
        logger.error("Failed to decrypt stored secret; SECRET_KEY may have changed")
        raise SecretDecryptionError("无法解密已存储的密钥，请检查 SECRET_KEY 配置") from exc


__all__ = ["SecretDecryptionError", "decrypt_secret", "encrypt_secret"]
