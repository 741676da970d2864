"""Tests for the generation guard."""

import pytest

from buildtrack.core.guard import GenerationGuard, GenerationInProgress


def test_acquire_and_release():
    """Test the guard is held between acquire and release."""
    guard = GenerationGuard()
    token = guard.acquire("p1", "build-1")

    assert guard.is_held("p1")
    assert guard.release(token) is True
    assert not guard.is_held("p1")


def test_second_acquire_rejected():
    """Test only one build per project may hold the guard."""
    guard = GenerationGuard()
    guard.acquire("p1", "build-1")

    with pytest.raises(GenerationInProgress, match="build-1"):
        guard.acquire("p1", "build-2")

    # Other projects are independent
    guard.acquire("p2", "build-3")


def test_stale_token_release_ignored():
    """Test releasing with an old token does not free a newer holder."""
    guard = GenerationGuard()
    old = guard.acquire("p1", "build-1")
    guard.release(old)
    new = guard.acquire("p1", "build-2")

    assert guard.release(old) is False
    assert guard.is_held("p1")
    assert guard.release(new) is True


def test_hold_releases_on_error():
    """Test the context manager releases even when the body raises."""
    guard = GenerationGuard()
    with pytest.raises(RuntimeError):
        with guard.hold("p1", "build-1"):
            assert guard.is_held("p1")
            raise RuntimeError("stream failed")

    assert not guard.is_held("p1")
