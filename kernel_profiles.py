import math
from enum import Enum
from typing import Union

from base_timing import compute_time_ms, payload_bytes_per_rank
from timing_model import (
    InvalidParameter,
    KernelProfile,
    KernelProfileComparison,
    ProfileCost,
    WorkloadParameters,
)


class ProfileMode(Enum):
    LL = "ll"
    HT = "ht"
    AUTO = "auto"


# (latency multiplier, bandwidth multiplier, name, description)
_PROFILE_TABLE = {
    ProfileMode.LL: (0.55, 0.70, "Low-latency", "smaller fixed cost; less BW-optimized"),
    ProfileMode.HT: (1.15, 1.35, "High-throughput", "more setup; higher BW_eff via hierarchy"),
}


def coerce_mode(mode: Union[str, ProfileMode]) -> ProfileMode:
    if isinstance(mode, ProfileMode):
        return mode
    normalized = str(mode).strip().lower()
    for candidate in ProfileMode:
        if candidate.value == normalized:
            return candidate
    raise InvalidParameter(
        f"kernel profile must be one of {[m.value for m in ProfileMode]} (got {mode!r})"
    )


def get_profile(mode, latency_us, bandwidth_gbps) -> KernelProfile:
    """Build the LL or HT profile over the caller's base latency/bandwidth."""
    resolved = coerce_mode(mode)
    if resolved == ProfileMode.AUTO:
        raise InvalidParameter("get_profile needs an explicit 'll' or 'ht' mode; resolve 'auto' first")
    if bandwidth_gbps is None or not bandwidth_gbps > 0:
        raise InvalidParameter(f"bandwidth_gbps must be > 0 (got {bandwidth_gbps})")
    if latency_us is None or not latency_us >= 0:
        raise InvalidParameter(f"latency_us must be >= 0 (got {latency_us})")
    latency_scale, bandwidth_scale, _, description = _PROFILE_TABLE[resolved]
    return KernelProfile(
        name=resolved.value,
        latency_ms=latency_scale * latency_us / 1000.0,
        bandwidth_gbps=bandwidth_scale * bandwidth_gbps,
        description=description,
    )


def display_name(mode) -> str:
    resolved = coerce_mode(mode)
    if resolved == ProfileMode.AUTO:
        return "Auto"
    return _PROFILE_TABLE[resolved][2]


def round_trip_ms(payload_bytes, profile: KernelProfile) -> float:
    """Dispatch plus combine leg, each paying the profile's latency and bandwidth terms."""
    if payload_bytes is None or not math.isfinite(payload_bytes) or payload_bytes < 0:
        raise InvalidParameter(f"payload_bytes must be a finite value >= 0 (got {payload_bytes})")
    transfer_ms = payload_bytes / (profile.bandwidth_gbps * 1e9) * 1000.0
    return 2 * (profile.latency_ms + transfer_ms)


def _payload(params: WorkloadParameters) -> float:
    return payload_bytes_per_rank(
        params.token_count, params.top_k, params.hidden_dim, params.bytes_per_element, params.ep_ranks
    )


def profile_round_trip_ms(params: WorkloadParameters, mode) -> float:
    """Round trip for the workload's payload; an empty step moves nothing and costs nothing."""
    profile = get_profile(mode, params.latency_us, params.bandwidth_gbps)
    if params.token_count == 0:
        return 0.0
    return round_trip_ms(_payload(params), profile)


def pick_optimal(params: WorkloadParameters) -> ProfileMode:
    """Cheaper round trip for this payload; ties go to LL."""
    ll_time = profile_round_trip_ms(params, ProfileMode.LL)
    ht_time = profile_round_trip_ms(params, ProfileMode.HT)
    return ProfileMode.LL if ll_time <= ht_time else ProfileMode.HT


def resolve_profile(mode, params: WorkloadParameters) -> ProfileMode:
    resolved = coerce_mode(mode)
    if resolved == ProfileMode.AUTO:
        return pick_optimal(params)
    return resolved


def _profile_cost(params: WorkloadParameters, mode: ProfileMode, compute_ms: float) -> ProfileCost:
    profile = get_profile(mode, params.latency_us, params.bandwidth_gbps)
    comm_ms = profile_round_trip_ms(params, mode)
    overlapped = max(comm_ms, compute_ms)
    sequential = comm_ms + compute_ms
    return ProfileCost(
        profile=profile,
        round_trip_ms=comm_ms,
        compute_ms=compute_ms,
        overlapped_step_ms=overlapped,
        sequential_step_ms=sequential,
        tokens_per_s_overlapped=params.token_count / (overlapped / 1000.0) if overlapped > 0 else 0.0,
        tokens_per_s_sequential=params.token_count / (sequential / 1000.0) if sequential > 0 else 0.0,
    )


def evaluate_kernel_profiles(params: WorkloadParameters) -> KernelProfileComparison:
    compute_ms = compute_time_ms(
        params.token_count,
        params.ep_ranks,
        params.compute_us_per_token,
        params.skew,
        top_k=params.top_k,
    )
    return KernelProfileComparison(
        ll=_profile_cost(params, ProfileMode.LL, compute_ms),
        ht=_profile_cost(params, ProfileMode.HT, compute_ms),
        optimal=pick_optimal(params).value,
    )
