import hashlib
import hmac

import pytest

from application.services.webhook_verifier import WebhookVerifier, compute_signature


SECRET = "whsec_unit"
BODY = b'{"event":"payment.captured","payload":{"payment":{"entity":{"id":"pay_1"}}}}'


def _flip_bit(data: bytes, index: int) -> bytes:
    byte, bit = divmod(index, 8)
    mutated = bytearray(data)
    mutated[byte] ^= 1 << bit
    return bytes(mutated)


def test_compute_signature_is_lowercase_hex_hmac_sha256():
    expected = hmac.new(SECRET.encode(), BODY, hashlib.sha256).hexdigest()
    assert compute_signature(BODY, SECRET) == expected
    assert compute_signature(BODY.decode(), SECRET) == expected


def test_valid_signature_accepted():
    verifier = WebhookVerifier(SECRET)
    assert verifier.verify(BODY, compute_signature(BODY, SECRET)) is True


@pytest.mark.parametrize("index", [0, 7, 64, 203, len(BODY) * 8 - 1])
def test_body_bit_flip_rejected(index):
    verifier = WebhookVerifier(SECRET)
    signature = compute_signature(BODY, SECRET)
    assert verifier.verify(_flip_bit(BODY, index), signature) is False


@pytest.mark.parametrize("index", [0, 3, 100, 255])
def test_signature_bit_flip_rejected(index):
    verifier = WebhookVerifier(SECRET)
    signature = compute_signature(BODY, SECRET).encode("ascii")
    mutated = _flip_bit(signature, index).decode("latin-1")
    assert verifier.verify(BODY, mutated) is False


def test_wrong_secret_rejected():
    assert WebhookVerifier("other").verify(BODY, compute_signature(BODY, SECRET)) is False


@pytest.mark.parametrize("signature", [None, ""])
def test_missing_signature_rejected(signature):
    assert WebhookVerifier(SECRET).verify(BODY, signature) is False


def test_unconfigured_secret_rejects_instead_of_raising():
    assert WebhookVerifier(None).verify(BODY, "deadbeef") is False


def test_checkout_signature_uses_order_pipe_payment():
    signature = compute_signature("order_1|pay_1", SECRET)
    verifier = WebhookVerifier(SECRET)
    assert verifier.verify_checkout("order_1", "pay_1", signature) is True
    assert verifier.verify_checkout("order_1", "pay_2", signature) is False
