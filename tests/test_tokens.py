import re

import pytest

from certflow.shared import tokens
from certflow.shared.tokens import (
    TOKEN_LENGTH,
    generate_certificate_token,
    short_certificate_id,
)

ALNUM_32 = re.compile(r"^[A-Za-z0-9]{32}$")


@pytest.mark.no_smoke
def test_tokens_are_unique_across_many_calls():
    seen = {
        generate_certificate_token(pid % 50, 7, "2025-10-03T12:00:00+00:00")
        for pid in range(10_000)
    }
    assert len(seen) == 10_000


def test_token_shape():
    token = generate_certificate_token(1, 2, "2025-10-03T12:00:00+00:00")
    assert len(token) == TOKEN_LENGTH
    assert ALNUM_32.match(token)


def test_same_inputs_give_different_tokens():
    first = generate_certificate_token(1, 2, "2025-10-03T12:00:00+00:00")
    second = generate_certificate_token(1, 2, "2025-10-03T12:00:00+00:00")
    assert first != second


def test_short_encoding_is_padded(monkeypatch):
    monkeypatch.setattr(tokens, "_encoded_token", lambda *args: "abc")
    token = generate_certificate_token(1, 2, "ts")
    assert token.startswith("abc")
    assert ALNUM_32.match(token)


def test_encoding_failure_falls_back_to_random(monkeypatch, caplog):
    def boom(*args):
        raise RuntimeError("encoder down")

    monkeypatch.setattr(tokens, "_encoded_token", boom)
    caplog.set_level("ERROR", logger="certflow.certs")
    token = generate_certificate_token(1, 2, "ts")
    assert ALNUM_32.match(token)
    assert any("[CERT-TOKEN]" in message for message in caplog.messages)


def test_short_certificate_id():
    assert short_certificate_id("abcdefghijkl") == "ABCDEFGH"
    assert short_certificate_id("") == ""
