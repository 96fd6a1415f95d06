"""Unit tests for the fixed-window rate limiter."""

import pytest

from overlay_relay.rate_limiter import FixedWindowRateLimiter


class FakeClock:
    def __init__(self, t: float = 0.0) -> None:
        self.t = t

    def __call__(self) -> float:  # acts like time.monotonic
        return self.t

    def advance(self, dt: float) -> None:
        self.t += dt


def test_exactly_limit_messages_allowed_per_window() -> None:
    clock = FakeClock()
    rl = FixedWindowRateLimiter(limit=3, clock=clock)

    assert [rl.allow("10.0.0.1") for _ in range(3)] == [True, True, True]
    assert rl.allow("10.0.0.1") is False


def test_rejected_message_still_counts() -> None:
    """The over-limit call increments the count before the comparison."""
    clock = FakeClock()
    rl = FixedWindowRateLimiter(limit=1, clock=clock)

    rl.allow("a")
    rl.allow("a")
    rl.allow("a")

    window = rl.window_for("a")
    assert window is not None
    assert window.count == 3


def test_window_resets_only_after_window_elapsed() -> None:
    clock = FakeClock(100.0)
    rl = FixedWindowRateLimiter(limit=2, clock=clock)

    assert rl.allow("a")
    assert rl.allow("a")
    assert not rl.allow("a")

    # Exactly at the boundary the window is still current
    clock.advance(60.0)
    assert not rl.allow("a")

    clock.advance(0.001)
    assert rl.allow("a")
    window = rl.window_for("a")
    assert window is not None
    assert window.count == 1
    assert window.start == pytest.approx(160.001)


def test_window_start_does_not_slide() -> None:
    clock = FakeClock()
    rl = FixedWindowRateLimiter(limit=2, clock=clock)

    assert rl.allow("a")
    clock.advance(59.0)
    assert rl.allow("a")
    clock.advance(0.5)
    assert not rl.allow("a")
    clock.advance(1.0)  # 60.5s after the first message
    assert rl.allow("a")


def test_identities_are_independent() -> None:
    clock = FakeClock()
    rl = FixedWindowRateLimiter(limit=1, clock=clock)

    assert rl.allow("a")
    assert not rl.allow("a")
    assert rl.allow("b")
    assert len(rl) == 2


def test_windows_created_lazily() -> None:
    rl = FixedWindowRateLimiter(limit=5, clock=FakeClock())
    assert len(rl) == 0
    assert rl.window_for("nobody") is None


def test_zero_limit_rejects_every_message() -> None:
    rl = FixedWindowRateLimiter(limit=0, clock=FakeClock())
    assert not rl.allow("a")
    assert not rl.allow("a")


@pytest.mark.parametrize("kwargs", [{"limit": -1}, {"limit": 5, "window_seconds": 0}])
def test_invalid_arguments(kwargs: dict[str, float]) -> None:
    with pytest.raises(ValueError):
        FixedWindowRateLimiter(**kwargs)  # type: ignore[arg-type]
