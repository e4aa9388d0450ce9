from __future__ import annotations

from unittest.mock import MagicMock

from app.services.rate_limit import FixedWindowRateLimiter, get_client_ip


def test_allows_up_to_max_requests_per_window(clock) -> None:
  limiter = FixedWindowRateLimiter(clock=clock)

  results = [limiter.check_limit("1.2.3.4", max_requests=5, window_ms=60_000) for _ in range(6)]

  assert [result.success for result in results] == [True] * 5 + [False]
  assert [result.remaining for result in results] == [4, 3, 2, 1, 0, 0]


def test_window_resets_after_it_lapses(clock) -> None:
  limiter = FixedWindowRateLimiter(clock=clock)
  for _ in range(5):
    limiter.check_limit("client")

  clock.advance(30)
  blocked = limiter.check_limit("client")
  assert not blocked.success
  assert blocked.reset_in == 30_000

  clock.advance(31)
  assert limiter.check_limit("client").success


def test_identifiers_are_counted_separately(clock) -> None:
  limiter = FixedWindowRateLimiter(clock=clock)
  limiter.check_limit("a", max_requests=1)

  assert not limiter.check_limit("a", max_requests=1).success
  assert limiter.check_limit("b", max_requests=1).success


def test_prune_drops_lapsed_windows(clock) -> None:
  limiter = FixedWindowRateLimiter(clock=clock)
  limiter.check_limit("a")
  clock.advance(61)

  assert limiter.prune() == 1


def test_client_ip_uses_first_forwarded_hop() -> None:
  request = MagicMock()
  request.headers = {"x-forwarded-for": "10.0.0.1, 172.16.0.1"}
  assert get_client_ip(request) == "10.0.0.1"

  request.headers = {}
  assert get_client_ip(request) == "anonymous"
