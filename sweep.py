"""
Token-count sweeps over the MoE cost model.

Samples are placed on a log2 grid of per-step token counts,
tokens = max(1, round(2**e * 8)) for e evenly spaced in [min_exp, max_exp],
matching the token slider mapping used by the presets.
"""

from dataclasses import replace
from typing import List

import numpy as np
import pandas as pd

from base_timing import evaluate_timings
from kernel_profiles import ProfileMode, profile_round_trip_ms
from timing_model import InvalidParameter, WorkloadParameters

SCALING_MIN_EXP = -3
SCALING_MAX_EXP = 20
SCALING_SAMPLES = 86

PROFILE_MIN_EXP = -3
PROFILE_MAX_EXP = 19
PROFILE_SAMPLES = 150


def tokens_from_exponent(exponent) -> int:
    return max(1, int(round(2.0 ** exponent * 8)))


def token_sweep_counts(min_exp: float, max_exp: float, samples: int) -> List[int]:
    if samples < 2:
        raise InvalidParameter(f"samples must be >= 2 (got {samples})")
    if not max_exp > min_exp:
        raise InvalidParameter(f"max_exp must be > min_exp (got {min_exp}..{max_exp})")
    exponents = np.linspace(min_exp, max_exp, samples)
    return [tokens_from_exponent(float(e)) for e in exponents]


def scaling_curve(
    params: WorkloadParameters,
    min_exp: float = SCALING_MIN_EXP,
    max_exp: float = SCALING_MAX_EXP,
    samples: int = SCALING_SAMPLES,
) -> pd.DataFrame:
    """Timings for every sampled token count, all other parameters held fixed."""
    rows = []
    for tokens in token_sweep_counts(min_exp, max_exp, samples):
        timings = evaluate_timings(replace(params, token_count=tokens))
        row = {"tokens": tokens}
        row.update(timings.to_dict())
        row["comm_ms"] = timings.comm_ms()
        rows.append(row)
    return pd.DataFrame(rows)


def profile_curve(
    params: WorkloadParameters,
    min_exp: float = PROFILE_MIN_EXP,
    max_exp: float = PROFILE_MAX_EXP,
    samples: int = PROFILE_SAMPLES,
) -> pd.DataFrame:
    """LL and HT round-trip times for every sampled token count."""
    rows = []
    for tokens in token_sweep_counts(min_exp, max_exp, samples):
        point = replace(params, token_count=tokens)
        rows.append(
            {
                "tokens": tokens,
                "ll_ms": profile_round_trip_ms(point, ProfileMode.LL),
                "ht_ms": profile_round_trip_ms(point, ProfileMode.HT),
            }
        )
    return pd.DataFrame(rows)
