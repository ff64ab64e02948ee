import math

import pytest

import base_timing
from base_timing import (
  aggregate,
  compute_time_ms,
  coordination_penalty,
  dispatch_time_ms,
  evaluate_timings,
  payload_bytes_per_rank,
  summarize_timings,
)
from timing_model import InvalidParameter, Timings, WorkloadParameters


def _params(**overrides):
  base = {
    "token_count": 1024,
    "ep_ranks": 16,
    "top_k": 2,
    "hidden_dim": 6144,
    "bytes_per_element": 2,
    "latency_us": 25,
    "bandwidth_gbps": 25,
    "compute_us_per_token": 0.45,
    "skew": 0.10,
  }
  base.update(overrides)
  return WorkloadParameters(**base)


def test_reference_scenario_is_finite_and_positive():
  timings = evaluate_timings(_params())
  values = [
    timings.dispatch_ms,
    timings.compute_ms,
    timings.combine_ms,
    timings.sequential_total_ms,
    timings.dbo_overlapped_ms,
  ]
  assert all(math.isfinite(v) and v > 0 for v in values)
  assert timings.dbo_overlapped_ms <= timings.sequential_total_ms


def test_reference_scenario_values():
  timings = evaluate_timings(_params())
  # 1024 tok * 2 * 6144 * 2 B / 16 ranks = 1.5 MiB per rank and leg
  assert payload_bytes_per_rank(1024, 2, 6144, 2, 16) == pytest.approx(1572864.0)
  assert timings.dispatch_ms == pytest.approx(0.025 + 1572864 / 25e9 * 1000)
  # 128 tokens/rank * (1 + 3.2/32) * (1 + 2.2*0.1) * (1 + 0.12*4) * 0.45 us
  expected_compute = 128 * 1.1 * 1.22 * 1.48 * 0.45 / 1000
  assert timings.compute_ms == pytest.approx(expected_compute)
  assert timings.sequential_total_ms == pytest.approx(2 * timings.dispatch_ms + expected_compute)
  assert timings.dbo_overlapped_ms == pytest.approx(max(2 * timings.dispatch_ms, expected_compute))


@pytest.mark.parametrize(
  "overrides",
  [
    {},
    {"token_count": 1},
    {"token_count": 8192, "ep_ranks": 32, "bandwidth_gbps": 50, "compute_us_per_token": 0.6, "skew": 0.05},
    {"token_count": 1048576, "ep_ranks": 64, "skew": 1.0},
    {"ep_ranks": 1, "latency_us": 0},
    {"compute_us_per_token": 0},
  ],
)
def test_combine_matches_dispatch_and_overlap_never_hurts(overrides):
  timings = evaluate_timings(_params(**overrides))
  assert timings.combine_ms == timings.dispatch_ms
  assert timings.dbo_overlapped_ms <= timings.sequential_total_ms + 1e-9


def test_comm_share_does_not_grow_with_batch_size():
  small = evaluate_timings(_params(token_count=256))
  large = evaluate_timings(_params(token_count=1048576))
  share_small = (small.dispatch_ms + small.combine_ms) / small.sequential_total_ms
  share_large = (large.dispatch_ms + large.combine_ms) / large.sequential_total_ms
  assert share_large <= share_small + 0.01


def test_compute_does_not_decrease_with_skew():
  low = evaluate_timings(_params(token_count=4096, skew=0.0))
  high = evaluate_timings(_params(token_count=4096, skew=1.0))
  assert high.compute_ms >= low.compute_ms


def test_single_rank_has_no_coordination_penalty():
  assert coordination_penalty(1) == 1
  timings = evaluate_timings(_params(ep_ranks=1))
  assert timings.compute_ms == pytest.approx(1024 * 2 * 1.1 * 1.22 * 0.45 / 1000)


def test_zero_tokens_yield_zero_timings():
  timings = evaluate_timings(_params(token_count=0))
  assert timings.to_dict() == {
    "dispatch_ms": 0.0,
    "compute_ms": 0.0,
    "combine_ms": 0.0,
    "sequential_total_ms": 0.0,
    "dbo_overlapped_ms": 0.0,
  }


def test_random_variation_shrinks_with_batch_size():
  assert base_timing.random_variation_factor(0) == pytest.approx(4.2)
  assert base_timing.random_variation_factor(1) == pytest.approx(4.2)
  assert base_timing.random_variation_factor(10000) == pytest.approx(1.032)


@pytest.mark.parametrize(
  "overrides",
  [
    {"ep_ranks": 0},
    {"ep_ranks": -2},
    {"bandwidth_gbps": 0},
    {"bandwidth_gbps": -5},
    {"token_count": -1},
    {"skew": 1.5},
    {"latency_us": float("nan")},
    {"bandwidth_gbps": float("inf")},
    {"top_k": 0},
    {"token_count": 12.5},
    {"ep_ranks": True},
  ],
)
def test_invalid_workload_parameters_are_rejected(overrides):
  with pytest.raises(InvalidParameter):
    _params(**overrides)


def test_invalid_parameter_is_a_value_error():
  with pytest.raises(ValueError):
    _params(ep_ranks=0)


@pytest.mark.parametrize("bandwidth", [0, -1.0, float("nan")])
def test_dispatch_rejects_bad_bandwidth(bandwidth):
  with pytest.raises(InvalidParameter):
    dispatch_time_ms(1024, 16, 25, bandwidth)


@pytest.mark.parametrize("ranks", [0, -4])
def test_phase_functions_reject_bad_ranks(ranks):
  with pytest.raises(InvalidParameter):
    dispatch_time_ms(1024, ranks, 25, 25)
  with pytest.raises(InvalidParameter):
    compute_time_ms(1024, ranks, 0.45, 0.1)


def test_non_finite_result_is_reported_as_invalid_parameter():
  with pytest.raises(InvalidParameter):
    dispatch_time_ms(1024, 16, float("inf"), 25)


def test_aggregate_keeps_closed_forms():
  timings = aggregate(1.0, 3.0, 1.0)
  assert timings.sequential_total_ms == 5.0
  assert timings.dbo_overlapped_ms == 3.0
  comm_bound = aggregate(2.0, 1.0, 2.0)
  assert comm_bound.dbo_overlapped_ms == 4.0


def test_timings_reject_asymmetric_legs():
  with pytest.raises(InvalidParameter):
    Timings(dispatch_ms=1.0, compute_ms=1.0, combine_ms=2.0, sequential_total_ms=4.0, dbo_overlapped_ms=3.0)


def test_summary_reports_throughput_and_comm_fraction():
  params = _params()
  timings = evaluate_timings(params)
  summary = summarize_timings(params, timings)
  assert summary.tokens_per_s_sequential == pytest.approx(1024 / (timings.sequential_total_ms / 1000))
  assert summary.tokens_per_s_overlapped == pytest.approx(1024 / (timings.dbo_overlapped_ms / 1000))
  assert summary.comm_fraction == pytest.approx(2 * timings.dispatch_ms / timings.sequential_total_ms)
  assert summary.speedup >= 1.0


def test_summary_for_empty_step():
  params = _params(token_count=0)
  summary = summarize_timings(params, evaluate_timings(params))
  assert summary.tokens_per_s_sequential == 0.0
  assert summary.comm_fraction == 0.0
  assert summary.speedup == 1.0


def test_evaluation_is_independent_of_call_order():
  first = evaluate_timings(_params(token_count=333))
  evaluate_timings(_params(token_count=99999, skew=0.9))
  second = evaluate_timings(_params(token_count=333))
  assert first == second


@pytest.mark.parametrize(
  "call",
  [
    lambda: dispatch_time_ms(1024, 16, -1000, 25),
    lambda: dispatch_time_ms(1024, 16, float("nan"), 25),
    lambda: compute_time_ms(1024, 16, 0.45, -1.0),
    lambda: compute_time_ms(1024, 16, 0.45, 1.5),
    lambda: compute_time_ms(1024, 16, -1.0, 0.1),
    lambda: compute_time_ms(float("nan"), 16, 0.45, 0.1),
    lambda: payload_bytes_per_rank(1024, 2, 6144, -2, 16),
    lambda: payload_bytes_per_rank(1024, 0, 6144, 2, 16),
    lambda: payload_bytes_per_rank(1024, 2, 6144, float("inf"), 16),
    lambda: base_timing.straggler_factor(16, -0.5),
  ],
)
def test_phase_functions_reject_out_of_domain_inputs(call):
  with pytest.raises(InvalidParameter):
    call()


@pytest.mark.parametrize(
  "fields",
  [
    # sequential total disagrees with d + c + b
    {"dispatch_ms": 1.0, "compute_ms": 3.0, "combine_ms": 1.0, "sequential_total_ms": 4.0, "dbo_overlapped_ms": 3.0},
    # overlapped total above the sequential one
    {"dispatch_ms": 1.0, "compute_ms": 3.0, "combine_ms": 1.0, "sequential_total_ms": 5.0, "dbo_overlapped_ms": 6.0},
    # overlapped total below max(d + b, c)
    {"dispatch_ms": 2.0, "compute_ms": 1.0, "combine_ms": 2.0, "sequential_total_ms": 5.0, "dbo_overlapped_ms": 2.0},
  ],
)
def test_timings_reject_inconsistent_totals(fields):
  with pytest.raises(InvalidParameter):
    Timings(**fields)


def test_timings_accept_consistent_totals():
  timings = Timings(dispatch_ms=1.0, compute_ms=3.0, combine_ms=1.0, sequential_total_ms=5.0, dbo_overlapped_ms=3.0)
  assert timings == aggregate(1.0, 3.0, 1.0)
