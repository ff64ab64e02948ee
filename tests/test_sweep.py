import pytest

from base_timing import evaluate_timings
from kernel_profiles import profile_round_trip_ms
from sweep import profile_curve, scaling_curve, token_sweep_counts, tokens_from_exponent
from timing_model import InvalidParameter, WorkloadParameters


def _params():
  return WorkloadParameters(
    token_count=8192,
    ep_ranks=16,
    latency_us=25,
    bandwidth_gbps=25,
    compute_us_per_token=0.45,
    skew=0.10,
  )


def test_token_slider_mapping():
  assert tokens_from_exponent(10) == 8192
  assert tokens_from_exponent(-3) == 1
  # Never rounds down to an empty step.
  assert tokens_from_exponent(-10) == 1


def test_profile_sweep_grid_endpoints():
  counts = token_sweep_counts(-3, 19, 150)
  assert len(counts) == 150
  assert counts[0] == 1
  assert counts[-1] == 4194304
  assert all(b >= a for a, b in zip(counts, counts[1:]))


@pytest.mark.parametrize("min_exp,max_exp,samples", [(-3, 19, 1), (5, 5, 10), (6, 2, 10)])
def test_bad_sweep_ranges(min_exp, max_exp, samples):
  with pytest.raises(InvalidParameter):
    token_sweep_counts(min_exp, max_exp, samples)


def test_scaling_curve_columns_and_values():
  params = _params()
  curve = scaling_curve(params)
  assert len(curve) == 86
  assert list(curve.columns) == [
    "tokens",
    "dispatch_ms",
    "compute_ms",
    "combine_ms",
    "sequential_total_ms",
    "dbo_overlapped_ms",
    "comm_ms",
  ]
  assert int(curve["tokens"].iloc[-1]) == 8388608
  assert (curve["comm_ms"] == 2 * curve["dispatch_ms"]).all()
  assert (curve["dbo_overlapped_ms"] <= curve["sequential_total_ms"]).all()
  row = curve.iloc[40]
  expected = evaluate_timings(WorkloadParameters(**{**params.to_dict(), "token_count": int(row["tokens"])}))
  assert row["compute_ms"] == pytest.approx(expected.compute_ms)


def test_profile_curve_tracks_round_trips():
  params = _params()
  curve = profile_curve(params, min_exp=0, max_exp=4, samples=5)
  assert list(curve["tokens"]) == [8, 16, 32, 64, 128]
  for row in curve.itertuples(index=False):
    point = WorkloadParameters(**{**params.to_dict(), "token_count": int(row.tokens)})
    assert row.ll_ms == pytest.approx(profile_round_trip_ms(point, "ll"))
    assert row.ht_ms == pytest.approx(profile_round_trip_ms(point, "ht"))


def test_sweep_leaves_base_params_untouched():
  params = _params()
  scaling_curve(params, samples=4)
  assert params.token_count == 8192
