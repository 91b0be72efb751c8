"""Tests for descriptor encryption at rest."""

from __future__ import annotations

import numpy as np
import pytest
from cryptography.fernet import Fernet

from django.core.exceptions import ImproperlyConfigured

from faceguard.crypto import DescriptorCipher, InvalidToken
from faceguard.descriptors import DESCRIPTOR_SIZE
from faceguard.exceptions import DescriptorSizeError


def test_encrypted_descriptor_is_opaque_and_restorable():
    cipher = DescriptorCipher(Fernet.generate_key())
    descriptor = np.linspace(-1, 1, DESCRIPTOR_SIZE)

    token = cipher.encrypt_descriptor(descriptor)
    restored = cipher.decrypt_descriptor(token)

    assert descriptor.tobytes() not in token
    assert np.array_equal(restored, descriptor)
    assert not restored.flags.writeable


def test_token_from_another_key_is_rejected():
    token = DescriptorCipher(Fernet.generate_key()).encrypt_descriptor(np.ones(DESCRIPTOR_SIZE))

    with pytest.raises(InvalidToken):
        DescriptorCipher(Fernet.generate_key()).decrypt_descriptor(token)


def test_wrong_size_is_rejected_both_ways():
    cipher = DescriptorCipher(Fernet.generate_key())

    with pytest.raises(DescriptorSizeError):
        cipher.encrypt_descriptor(np.ones(64))

    token = cipher.encrypt_descriptor(np.ones(64), size=64)
    with pytest.raises(DescriptorSizeError):
        cipher.decrypt_descriptor(token)


def test_non_bytes_token_is_a_type_error():
    with pytest.raises(TypeError):
        DescriptorCipher(Fernet.generate_key()).decrypt_descriptor("not-bytes")


def test_key_is_read_from_settings(settings):
    key = Fernet.generate_key()
    settings.FACE_DATA_ENCRYPTION_KEY = key

    token = DescriptorCipher().encrypt_descriptor(np.ones(DESCRIPTOR_SIZE))

    assert np.array_equal(DescriptorCipher(key).decrypt_descriptor(token), np.ones(DESCRIPTOR_SIZE))


def test_invalid_key_is_a_configuration_error():
    with pytest.raises(ImproperlyConfigured):
        DescriptorCipher("too-short").encrypt_descriptor(np.ones(DESCRIPTOR_SIZE))
