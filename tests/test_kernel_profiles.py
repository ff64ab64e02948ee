import pytest

from base_timing import compute_time_ms, evaluate_timings, payload_bytes_per_rank
from kernel_profiles import (
  ProfileMode,
  evaluate_kernel_profiles,
  get_profile,
  pick_optimal,
  profile_round_trip_ms,
  resolve_profile,
  round_trip_ms,
)
from timing_model import InvalidParameter, WorkloadParameters


def _params(**overrides):
  base = {
    "token_count": 1024,
    "ep_ranks": 16,
    "latency_us": 25,
    "bandwidth_gbps": 25,
    "compute_us_per_token": 0.45,
    "skew": 0.10,
  }
  base.update(overrides)
  return WorkloadParameters(**base)


def test_profiles_scale_base_fabric():
  ll = get_profile("ll", 25, 25)
  ht = get_profile(ProfileMode.HT, 25, 25)
  assert ll.name == "ll"
  assert ll.latency_ms == pytest.approx(0.55 * 0.025)
  assert ll.bandwidth_gbps == pytest.approx(0.70 * 25)
  assert ht.name == "ht"
  assert ht.latency_ms == pytest.approx(1.15 * 0.025)
  assert ht.bandwidth_gbps == pytest.approx(1.35 * 25)


def test_round_trip_counts_both_legs():
  ll = get_profile("ll", 25, 25)
  assert round_trip_ms(0, ll) == pytest.approx(2 * ll.latency_ms)
  payload = 1_000_000
  expected = 2 * (ll.latency_ms + payload / (ll.bandwidth_gbps * 1e9) * 1000)
  assert round_trip_ms(payload, ll) == pytest.approx(expected)


def test_small_batches_prefer_low_latency():
  assert pick_optimal(_params(token_count=8)) == ProfileMode.LL


def test_large_batches_prefer_high_throughput():
  assert pick_optimal(_params(token_count=524288)) == ProfileMode.HT


def test_ties_resolve_to_low_latency():
  # No payload and no latency: both round trips cost exactly zero.
  assert pick_optimal(_params(token_count=0, latency_us=0)) == ProfileMode.LL


def test_auto_resolves_and_forced_modes_are_kept():
  params = _params(token_count=524288)
  assert resolve_profile("auto", params) == ProfileMode.HT
  assert resolve_profile("ll", params) == ProfileMode.LL
  assert resolve_profile(ProfileMode.HT, _params(token_count=8)) == ProfileMode.HT


def test_get_profile_rejects_auto_and_unknown_modes():
  with pytest.raises(InvalidParameter):
    get_profile("auto", 25, 25)
  with pytest.raises(InvalidParameter):
    get_profile("nvlink", 25, 25)


def test_get_profile_rejects_zero_bandwidth():
  with pytest.raises(InvalidParameter):
    get_profile("ht", 25, 0)


def test_comparison_reports_step_metrics():
  params = _params(token_count=8192)
  comparison = evaluate_kernel_profiles(params)
  compute_ms = compute_time_ms(8192, 16, 0.45, 0.10)
  payload = payload_bytes_per_rank(8192, 2, 6144, 2, 16)
  for cost, mode in ((comparison.ll, "ll"), (comparison.ht, "ht")):
    assert cost.round_trip_ms == pytest.approx(round_trip_ms(payload, get_profile(mode, 25, 25)))
    assert cost.compute_ms == pytest.approx(compute_ms)
    assert cost.overlapped_step_ms == pytest.approx(max(cost.round_trip_ms, compute_ms))
    assert cost.sequential_step_ms == pytest.approx(cost.round_trip_ms + compute_ms)
    assert cost.tokens_per_s_overlapped == pytest.approx(8192 / (cost.overlapped_step_ms / 1000))
  assert comparison.optimal == pick_optimal(params).value
  assert comparison.optimal_cost().round_trip_ms == min(comparison.ll.round_trip_ms, comparison.ht.round_trip_ms)


def test_profile_round_trip_matches_comparison():
  params = _params(token_count=4096)
  comparison = evaluate_kernel_profiles(params)
  assert profile_round_trip_ms(params, "ll") == comparison.ll.round_trip_ms
  assert profile_round_trip_ms(params, "ht") == comparison.ht.round_trip_ms


@pytest.mark.parametrize("payload", [-1.0, float("nan"), float("inf")])
def test_round_trip_rejects_bad_payloads(payload):
  with pytest.raises(InvalidParameter):
    round_trip_ms(payload, get_profile("ll", 25, 25))


def test_get_profile_rejects_negative_latency():
  with pytest.raises(InvalidParameter):
    get_profile("ll", -25, 25)


def test_empty_step_costs_nothing_for_either_profile():
  params = _params(token_count=0)
  comparison = evaluate_kernel_profiles(params)
  timings = evaluate_timings(params)
  for cost in (comparison.ll, comparison.ht):
    assert cost.round_trip_ms == timings.comm_ms() == 0.0
    assert cost.compute_ms == timings.compute_ms == 0.0
    assert cost.overlapped_step_ms == 0.0
    assert cost.tokens_per_s_overlapped == 0.0
  assert comparison.optimal == "ll"
  assert profile_round_trip_ms(params, "ht") == 0.0
