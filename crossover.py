"""
Threshold solvers for pairs of cost curves.

Every solver returns ``None`` when the curves never cross at a finite, positive
abscissa; callers must treat ``None`` as "no crossover", never as zero.
"""

import math
from typing import Optional, Sequence

import numpy as np

from base_timing import RANDOM_VARIATION_SCALE, straggler_factor
from kernel_profiles import ProfileMode, get_profile
from sweep import (
    PROFILE_MAX_EXP,
    PROFILE_MIN_EXP,
    PROFILE_SAMPLES,
    SCALING_MAX_EXP,
    SCALING_MIN_EXP,
    SCALING_SAMPLES,
    profile_curve,
    scaling_curve,
)
from timing_model import InvalidParameter, KernelProfile, WorkloadParameters

_IMAG_TOL = 1e-10


def solve_profile_crossover(first: KernelProfile, second: KernelProfile) -> Optional[float]:
    """
    Payload (bytes per rank, one leg) where the two profiles cost the same.

    Solves L1 + V/BW1 = L2 + V/BW2 for V. The round-trip factor of two scales
    both sides and drops out.
    """
    slope_gap = second.ms_per_byte() - first.ms_per_byte()
    if slope_gap == 0:
        # Parallel or coincident lines.
        return None
    payload = (first.latency_ms - second.latency_ms) / slope_gap
    if not math.isfinite(payload) or payload <= 0:
        return None
    return payload


def _bytes_per_token_per_rank(params: WorkloadParameters) -> float:
    return params.bytes_per_token() / params.ep_ranks


def profile_crossover_tokens(params: WorkloadParameters) -> Optional[float]:
    """Tokens per step beyond which HT beats LL (closed form)."""
    ll = get_profile(ProfileMode.LL, params.latency_us, params.bandwidth_gbps)
    ht = get_profile(ProfileMode.HT, params.latency_us, params.bandwidth_gbps)
    payload = solve_profile_crossover(ll, ht)
    if payload is None:
        return None
    return payload / _bytes_per_token_per_rank(params)


def find_sampled_crossover(
    xs: Sequence[float],
    first_costs: Sequence[float],
    second_costs: Sequence[float],
) -> Optional[float]:
    """
    Locate the first sign flip of (first - second) over sampled points and
    interpolate linearly in log-x between the bracketing samples.
    """
    x = np.asarray(xs, dtype=float)
    first = np.asarray(first_costs, dtype=float)
    second = np.asarray(second_costs, dtype=float)
    if not (x.shape == first.shape == second.shape) or x.ndim != 1:
        raise InvalidParameter("xs, first_costs and second_costs must be 1-D sequences of equal length")
    if x.size < 2:
        raise InvalidParameter("at least two samples are required to locate a crossover")
    if np.any(x <= 0) or not np.all(np.isfinite(x)):
        raise InvalidParameter("sample positions must be finite and > 0 for log interpolation")
    diff = first - second
    if not np.all(np.isfinite(diff)):
        raise InvalidParameter("sampled costs must be finite")

    for i in range(x.size - 1):
        d1 = diff[i]
        d2 = diff[i + 1]
        flipped = (d1 < 0 and d2 >= 0) or (d1 > 0 and d2 <= 0)
        if not flipped:
            continue
        t = abs(d1) / (abs(d1) + abs(d2))
        log_x1 = math.log(x[i])
        log_x2 = math.log(x[i + 1])
        return math.exp(log_x1 + t * (log_x2 - log_x1))
    return None


def sampled_profile_crossover_tokens(
    params: WorkloadParameters,
    min_exp: float = PROFILE_MIN_EXP,
    max_exp: float = PROFILE_MAX_EXP,
    samples: int = PROFILE_SAMPLES,
) -> Optional[float]:
    curve = profile_curve(params, min_exp=min_exp, max_exp=max_exp, samples=samples)
    return find_sampled_crossover(curve["tokens"], curve["ll_ms"], curve["ht_ms"])


def solve_compute_comm_crossover(params: WorkloadParameters) -> Optional[float]:
    """
    Token count at which straggler compute time equals dispatch + combine time.

    With s = sqrt(T) (T >= 1):
        compute(T) = b*s^2 + 3.2*b*s
        comm(T)    = 2*L + 2*a*s^2
    so the crossing is a root of (b - 2a) s^2 + 3.2 b s - 2L = 0.
    """
    latency_ms = params.latency_us / 1000.0
    a = _bytes_per_token_per_rank(params) / (params.bandwidth_gbps * 1e9) * 1000.0
    b = (
        params.top_k
        / params.ep_ranks
        * straggler_factor(params.ep_ranks, params.skew)
        * params.compute_us_per_token
        / 1000.0
    )
    coefficients = [b - 2 * a, RANDOM_VARIATION_SCALE * b, -2 * latency_ms]
    if all(c == 0 for c in coefficients):
        # Both curves are identically zero.
        return None
    roots = np.roots(coefficients)
    real_roots = roots.real[abs(roots.imag) < _IMAG_TOL]
    candidates = sorted(float(s) for s in real_roots if s >= 1.0)
    if not candidates:
        return None
    return candidates[0] ** 2


def sampled_compute_comm_crossover(
    params: WorkloadParameters,
    min_exp: float = SCALING_MIN_EXP,
    max_exp: float = SCALING_MAX_EXP,
    samples: int = SCALING_SAMPLES,
) -> Optional[float]:
    curve = scaling_curve(params, min_exp=min_exp, max_exp=max_exp, samples=samples)
    return find_sampled_crossover(curve["tokens"], curve["compute_ms"], curve["comm_ms"])


def find_crossover(first, second=None, xs=None) -> Optional[float]:
    """
    Dispatch to the right solver for the given inputs.

    - ``find_crossover(params)``: LL/HT threshold in tokens per step.
    - ``find_crossover(profile_a, profile_b)``: threshold in bytes per rank.
    - ``find_crossover(costs_a, costs_b, xs=samples)``: sampled threshold in x units.
    """
    if isinstance(first, WorkloadParameters):
        return profile_crossover_tokens(first)
    if isinstance(first, KernelProfile) and isinstance(second, KernelProfile):
        return solve_profile_crossover(first, second)
    if xs is not None and second is not None:
        return find_sampled_crossover(xs, first, second)
    raise TypeError(
        "find_crossover expects WorkloadParameters, two KernelProfile instances, "
        "or two cost sequences with xs"
    )
