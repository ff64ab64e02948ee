import math

from timing_model import InvalidParameter, Timings, TimingSummary, WorkloadParameters

# Typical large-model MoE layer: 6144 hidden, bf16 activations, top-2 routing.
DEFAULT_HIDDEN_DIM = 6144
DEFAULT_BYTES_PER_ELEMENT = 2
DEFAULT_TOP_K = 2

# Finite-batch routing variance: 1 + RANDOM_VARIATION_SCALE / sqrt(tokens)
RANDOM_VARIATION_SCALE = 3.2
SKEW_IMBALANCE_SCALE = 2.2
COORDINATION_SCALE = 0.12


def _check_ranks(ep_ranks) -> None:
    if ep_ranks is None or ep_ranks <= 0:
        raise InvalidParameter(f"ep_ranks must be >= 1 (got {ep_ranks})")


def _check_bandwidth(bandwidth_gbps) -> None:
    if bandwidth_gbps is None or not bandwidth_gbps > 0:
        raise InvalidParameter(f"bandwidth_gbps must be > 0 (got {bandwidth_gbps})")


def _check_tokens(token_count) -> None:
    if token_count is None or not token_count >= 0:
        raise InvalidParameter(f"token_count must be >= 0 (got {token_count})")


def _check_non_negative(name: str, value) -> None:
    if value is None or not math.isfinite(value) or value < 0:
        raise InvalidParameter(f"{name} must be a finite value >= 0 (got {value})")


def _check_positive(name: str, value) -> None:
    if value is None or not math.isfinite(value) or value <= 0:
        raise InvalidParameter(f"{name} must be a finite value > 0 (got {value})")


def _check_skew(skew) -> None:
    if skew is None or not 0.0 <= skew <= 1.0:
        raise InvalidParameter(f"skew must be within [0, 1] (got {skew})")


def _finite(name: str, value: float) -> float:
    if not math.isfinite(value):
        raise InvalidParameter(f"{name} evaluated to a non-finite value ({value})")
    return value


def payload_bytes_per_rank(token_count, top_k, hidden_dim, bytes_per_element, ep_ranks) -> float:
    """
    Bytes each rank moves per all-to-all leg.

    The global step volume is split evenly across ranks; routing skew is only
    charged on the compute side.
    """
    _check_tokens(token_count)
    _check_ranks(ep_ranks)
    _check_positive("top_k", top_k)
    _check_positive("hidden_dim", hidden_dim)
    _check_positive("bytes_per_element", bytes_per_element)
    return _finite("payload_bytes_per_rank", token_count * top_k * hidden_dim * bytes_per_element / ep_ranks)


def dispatch_time_ms(
    token_count,
    ep_ranks,
    latency_us,
    bandwidth_gbps,
    *,
    top_k=DEFAULT_TOP_K,
    hidden_dim=DEFAULT_HIDDEN_DIM,
    bytes_per_element=DEFAULT_BYTES_PER_ELEMENT,
) -> float:
    _check_bandwidth(bandwidth_gbps)
    _check_non_negative("latency_us", latency_us)
    latency_ms = latency_us / 1000.0
    bandwidth_bytes_per_sec = bandwidth_gbps * 1e9
    total_bytes = payload_bytes_per_rank(token_count, top_k, hidden_dim, bytes_per_element, ep_ranks)
    transfer_ms = total_bytes / bandwidth_bytes_per_sec * 1000.0
    return _finite("dispatch_ms", latency_ms + transfer_ms)


def combine_time_ms(
    token_count,
    ep_ranks,
    latency_us,
    bandwidth_gbps,
    *,
    top_k=DEFAULT_TOP_K,
    hidden_dim=DEFAULT_HIDDEN_DIM,
    bytes_per_element=DEFAULT_BYTES_PER_ELEMENT,
) -> float:
    # Symmetric all-to-all: the return leg carries the dispatch payload.
    return dispatch_time_ms(
        token_count,
        ep_ranks,
        latency_us,
        bandwidth_gbps,
        top_k=top_k,
        hidden_dim=hidden_dim,
        bytes_per_element=bytes_per_element,
    )


def coordination_penalty(ep_ranks) -> float:
    _check_ranks(ep_ranks)
    return 1.0 + COORDINATION_SCALE * math.log2(ep_ranks)


def straggler_factor(ep_ranks, skew) -> float:
    """Inflation of the mean per-rank load to approximate the slowest rank."""
    _check_skew(skew)
    structural_imbalance = 1.0 + SKEW_IMBALANCE_SCALE * skew
    return structural_imbalance * coordination_penalty(ep_ranks)


def random_variation_factor(token_count) -> float:
    _check_tokens(token_count)
    return 1.0 + RANDOM_VARIATION_SCALE / math.sqrt(max(1, token_count))


def compute_time_ms(token_count, ep_ranks, compute_us_per_token, skew, *, top_k=DEFAULT_TOP_K) -> float:
    """Expert compute time of the straggler rank, in milliseconds."""
    _check_tokens(token_count)
    _check_ranks(ep_ranks)
    _check_positive("top_k", top_k)
    _check_non_negative("compute_us_per_token", compute_us_per_token)
    _check_skew(skew)
    routed_tokens = token_count * top_k
    mean_load_per_expert = routed_tokens / ep_ranks
    max_expert_load = (
        mean_load_per_expert
        * random_variation_factor(token_count)
        * straggler_factor(ep_ranks, skew)
    )
    return _finite("compute_ms", max_expert_load * compute_us_per_token / 1000.0)


def aggregate(dispatch_ms, compute_ms, combine_ms) -> Timings:
    """
    Fold phase times into the sequential and steady-state overlapped totals.

    With ideal software pipelining the fabric (dispatch + combine) and the
    compute engine run concurrently, so the slower resource sets the step time.
    """
    sequential_total_ms = dispatch_ms + compute_ms + combine_ms
    dbo_overlapped_ms = max(dispatch_ms + combine_ms, compute_ms)
    return Timings(
        dispatch_ms=dispatch_ms,
        compute_ms=compute_ms,
        combine_ms=combine_ms,
        sequential_total_ms=_finite("sequential_total_ms", sequential_total_ms),
        dbo_overlapped_ms=_finite("dbo_overlapped_ms", dbo_overlapped_ms),
    )


def evaluate_timings(params: WorkloadParameters) -> Timings:
    if not isinstance(params, WorkloadParameters):
        raise TypeError("evaluate_timings expects a WorkloadParameters instance")
    if params.token_count == 0:
        return aggregate(0.0, 0.0, 0.0)

    dispatch_ms = dispatch_time_ms(
        params.token_count,
        params.ep_ranks,
        params.latency_us,
        params.bandwidth_gbps,
        top_k=params.top_k,
        hidden_dim=params.hidden_dim,
        bytes_per_element=params.bytes_per_element,
    )
    compute_ms = compute_time_ms(
        params.token_count,
        params.ep_ranks,
        params.compute_us_per_token,
        params.skew,
        top_k=params.top_k,
    )
    return aggregate(dispatch_ms, compute_ms, dispatch_ms)


def _tokens_per_s(token_count, step_ms) -> float:
    if step_ms <= 0:
        return 0.0
    return token_count / (step_ms / 1000.0)


def summarize_timings(params: WorkloadParameters, timings: Timings) -> TimingSummary:
    """Throughput, communication share and overlap speedup for report lines."""
    if timings.sequential_total_ms <= 0:
        return TimingSummary(
            tokens_per_s_sequential=0.0,
            tokens_per_s_overlapped=0.0,
            comm_fraction=0.0,
            speedup=1.0,
        )
    speedup = 1.0
    if timings.dbo_overlapped_ms > 0:
        speedup = timings.sequential_total_ms / timings.dbo_overlapped_ms
    return TimingSummary(
        tokens_per_s_sequential=_tokens_per_s(params.token_count, timings.sequential_total_ms),
        tokens_per_s_overlapped=_tokens_per_s(params.token_count, timings.dbo_overlapped_ms),
        comm_fraction=timings.comm_ms() / timings.sequential_total_ms,
        speedup=speedup,
    )


def payload_mib(params: WorkloadParameters) -> float:
    """One-way per-rank payload in MiB."""
    payload = payload_bytes_per_rank(
        params.token_count, params.top_k, params.hidden_dim, params.bytes_per_element, params.ep_ranks
    )
    return payload / (1024 * 1024)
