"""Encryption at rest for stored face descriptors."""

from __future__ import annotations

from typing import Union

from django.conf import settings
from django.core.exceptions import ImproperlyConfigured

import numpy as np
from cryptography.fernet import Fernet, InvalidToken

from .descriptors import DESCRIPTOR_SIZE, FaceDescriptor, as_descriptor

BytesLike = Union[bytes, bytearray, memoryview]


class DescriptorCipher:
    """Fernet-backed encryption for descriptor vectors.

    The key defaults to ``settings.FACE_DATA_ENCRYPTION_KEY`` and is resolved
    lazily so the settings module can be overridden in tests.
    """

    def __init__(self, key: BytesLike | str | None = None) -> None:
        self._key_override = key
        self._cipher: Fernet | None = None

    def _resolve_key(self) -> bytes:
        key = self._key_override
        if key is None:
            key = getattr(settings, "FACE_DATA_ENCRYPTION_KEY", None)
        if key is None:
            raise ImproperlyConfigured("FACE_DATA_ENCRYPTION_KEY is not configured.")
        key_bytes = key.encode() if isinstance(key, str) else bytes(key)
        try:
            Fernet(key_bytes)
        except (TypeError, ValueError) as exc:
            raise ImproperlyConfigured("FACE_DATA_ENCRYPTION_KEY is invalid.") from exc
        return key_bytes

    def _get_cipher(self) -> Fernet:
        if self._cipher is None:
            self._cipher = Fernet(self._resolve_key())
        return self._cipher

    def encrypt_descriptor(self, descriptor, size: int = DESCRIPTOR_SIZE) -> bytes:
        """Validate and encrypt a descriptor as raw float64 bytes."""

        vector = as_descriptor(descriptor, size)
        return self._get_cipher().encrypt(vector.tobytes())

    def decrypt_descriptor(
        self, token: BytesLike, size: int = DESCRIPTOR_SIZE
    ) -> FaceDescriptor:
        """Decrypt a stored token back into a read-only descriptor.

        Raises:
            InvalidToken: when the token was produced with another key.
            DescriptorSizeError: when the decrypted payload has the wrong size.
        """

        if not isinstance(token, (bytes, bytearray, memoryview)):
            raise TypeError("decrypt_descriptor expects a bytes-like object")
        raw = self._get_cipher().decrypt(bytes(token))
        return as_descriptor(np.frombuffer(raw, dtype=np.float64), size)


__all__ = ["DescriptorCipher", "InvalidToken"]
