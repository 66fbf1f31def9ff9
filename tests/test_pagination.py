"""Tests for the page token store."""

from __future__ import annotations

import re

from codexbridge.pagination import PageStore


def test_save_returns_hex_token(pages: PageStore) -> None:
    token = pages.save("tail")

    assert re.fullmatch(r"[0-9a-f]{32}", token)
    assert pages.peek(token) == "tail"


def test_tokens_are_unique(pages: PageStore) -> None:
    assert pages.save("a") != pages.save("a")


def test_pages_reassemble_original(pages: PageStore) -> None:
    original = "".join(chr(ord("a") + i % 26) for i in range(5_432))
    page_len = 1_000

    collected = [original[:page_len]]
    token = pages.save(original[page_len:])
    while (remaining := pages.peek(token)) is not None:
        head = remaining[:page_len]
        collected.append(head)
        pages.advance(token, len(head))

    assert "".join(collected) == original
    assert len(pages) == 0


def test_advance_on_exhausted_token_is_noop(pages: PageStore) -> None:
    token = pages.save("abc")
    pages.advance(token, 3)
    pages.advance(token, 3)

    assert pages.peek(token) is None


def test_advance_unknown_token_is_noop(pages: PageStore) -> None:
    pages.advance("unknown", 10)

    assert len(pages) == 0


def test_advance_keeps_token_identity(pages: PageStore) -> None:
    token = pages.save("0123456789")
    pages.advance(token, 4)

    assert pages.peek(token) == "456789"


def test_tokens_expire(pages: PageStore, clock) -> None:
    token = pages.save("tail")
    clock.advance(601)

    assert pages.peek(token) is None


def test_advance_refreshes_expiry(pages: PageStore, clock) -> None:
    token = pages.save("0123456789")
    clock.advance(500)
    pages.advance(token, 2)
    clock.advance(500)

    assert pages.peek(token) == "23456789"
