import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Tuple


class InvalidParameter(ValueError):
    """Raised when an input (or a value derived from it) leaves its valid domain."""


class Phase(Enum):
    DISPATCH = "dispatch"
    COMPUTE = "compute"
    COMBINE = "combine"


BATCH_A = "A"
BATCH_B = "B"
_BATCH_IDS = (BATCH_A, BATCH_B)

# Slack when checking stored totals against the phase times.
_TOTAL_REL_TOL = 1e-9
_TOTAL_ABS_TOL = 1e-12


def _require_finite(context: str, value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidParameter(f"{context} must be a number (got {value!r})")
    if not math.isfinite(value):
        raise InvalidParameter(f"{context} must be finite (got {value!r})")
    return value


def _require_int(context: str, value: Any, min_value: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidParameter(f"{context} must be an integer (got {value!r})")
    if value < min_value:
        raise InvalidParameter(f"{context} must be >= {min_value} (got {value})")
    return value


def _require_non_negative(context: str, value: Any) -> float:
    _require_finite(context, value)
    if value < 0:
        raise InvalidParameter(f"{context} must be >= 0 (got {value})")
    return value


def _require_positive(context: str, value: Any) -> float:
    _require_finite(context, value)
    if value <= 0:
        raise InvalidParameter(f"{context} must be > 0 (got {value})")
    return value


@dataclass(frozen=True)
class WorkloadParameters:
    """
    Workload and fabric description for one MoE layer step.

    Attributes:
        token_count: Tokens processed per step (int >= 0).
        ep_ranks: Expert-parallel group size P (int >= 1).
        top_k: Experts activated per token (int >= 1).
        hidden_dim: Hidden dimension of the token activations (int >= 1).
        bytes_per_element: Activation element size in bytes (> 0).
        compute_us_per_token: Expert compute cost per routed token (us, >= 0).
        skew: Routing load imbalance in [0, 1].
        latency_us: Base fabric latency per transfer (us, >= 0).
        bandwidth_gbps: Base fabric bandwidth (GB/s, > 0).
    """

    token_count: int
    ep_ranks: int
    latency_us: float
    bandwidth_gbps: float
    compute_us_per_token: float
    skew: float
    top_k: int = 2
    hidden_dim: int = 6144
    bytes_per_element: float = 2.0

    def __post_init__(self) -> None:
        _require_int("token_count", self.token_count, 0)
        _require_int("ep_ranks", self.ep_ranks, 1)
        _require_int("top_k", self.top_k, 1)
        _require_int("hidden_dim", self.hidden_dim, 1)
        _require_positive("bytes_per_element", self.bytes_per_element)
        _require_non_negative("compute_us_per_token", self.compute_us_per_token)
        _require_non_negative("latency_us", self.latency_us)
        _require_positive("bandwidth_gbps", self.bandwidth_gbps)
        _require_finite("skew", self.skew)
        if not 0.0 <= self.skew <= 1.0:
            raise InvalidParameter(f"skew must be within [0, 1] (got {self.skew})")

    def bytes_per_token(self) -> float:
        """Bytes one token carries per dispatch (or combine) leg."""
        return self.top_k * self.hidden_dim * self.bytes_per_element

    def to_dict(self) -> Dict[str, Any]:
        return {
            "token_count": self.token_count,
            "ep_ranks": self.ep_ranks,
            "top_k": self.top_k,
            "hidden_dim": self.hidden_dim,
            "bytes_per_element": self.bytes_per_element,
            "compute_us_per_token": self.compute_us_per_token,
            "skew": self.skew,
            "latency_us": self.latency_us,
            "bandwidth_gbps": self.bandwidth_gbps,
        }


@dataclass(frozen=True)
class Timings:
    """
    Phase-level timing estimates for one MoE layer step (milliseconds).

    combine_ms always equals dispatch_ms: both all-to-all legs carry the same payload.
    """

    dispatch_ms: float
    compute_ms: float
    combine_ms: float
    sequential_total_ms: float
    dbo_overlapped_ms: float

    def __post_init__(self) -> None:
        for name in ("dispatch_ms", "compute_ms", "combine_ms", "sequential_total_ms", "dbo_overlapped_ms"):
            _require_non_negative(f"Timings.{name}", getattr(self, name))
        if self.combine_ms != self.dispatch_ms:
            raise InvalidParameter(
                f"Timings.combine_ms ({self.combine_ms}) must equal dispatch_ms ({self.dispatch_ms})"
            )
        sequential = self.dispatch_ms + self.compute_ms + self.combine_ms
        overlapped = max(self.dispatch_ms + self.combine_ms, self.compute_ms)
        if not math.isclose(self.sequential_total_ms, sequential, rel_tol=_TOTAL_REL_TOL, abs_tol=_TOTAL_ABS_TOL):
            raise InvalidParameter(
                f"Timings.sequential_total_ms ({self.sequential_total_ms}) must equal d + c + b ({sequential})"
            )
        if not math.isclose(self.dbo_overlapped_ms, overlapped, rel_tol=_TOTAL_REL_TOL, abs_tol=_TOTAL_ABS_TOL):
            raise InvalidParameter(
                f"Timings.dbo_overlapped_ms ({self.dbo_overlapped_ms}) must equal max(d + b, c) ({overlapped})"
            )
        if self.dbo_overlapped_ms > self.sequential_total_ms + _TOTAL_ABS_TOL:
            raise InvalidParameter("Timings.dbo_overlapped_ms must not exceed sequential_total_ms")

    def comm_ms(self) -> float:
        """Return dispatch + combine time."""
        return self.dispatch_ms + self.combine_ms

    def to_dict(self) -> Dict[str, float]:
        return {
            "dispatch_ms": self.dispatch_ms,
            "compute_ms": self.compute_ms,
            "combine_ms": self.combine_ms,
            "sequential_total_ms": self.sequential_total_ms,
            "dbo_overlapped_ms": self.dbo_overlapped_ms,
        }


@dataclass(frozen=True)
class TimingSummary:
    tokens_per_s_sequential: float
    tokens_per_s_overlapped: float
    comm_fraction: float
    speedup: float

    def to_dict(self) -> Dict[str, float]:
        return {
            "tokens_per_s_sequential": self.tokens_per_s_sequential,
            "tokens_per_s_overlapped": self.tokens_per_s_overlapped,
            "comm_fraction": self.comm_fraction,
            "speedup": self.speedup,
        }


@dataclass(frozen=True)
class KernelProfile:
    """
    Effective fabric characteristics of one communication-kernel flavour.

    Attributes:
        name: Profile key ("ll" or "ht").
        latency_ms: Effective fixed cost per transfer leg (ms).
        bandwidth_gbps: Effective sustained bandwidth (GB/s, > 0).
        description: Human readable summary for reports.
    """

    name: str
    latency_ms: float
    bandwidth_gbps: float
    description: str = ""

    def __post_init__(self) -> None:
        if not self.name:
            raise InvalidParameter("KernelProfile.name must be non-empty")
        _require_non_negative(f"KernelProfile '{self.name}' latency_ms", self.latency_ms)
        _require_positive(f"KernelProfile '{self.name}' bandwidth_gbps", self.bandwidth_gbps)

    def ms_per_byte(self) -> float:
        return 1000.0 / (self.bandwidth_gbps * 1e9)


@dataclass(frozen=True)
class ProfileCost:
    """Step-level cost of running the workload with one kernel profile."""

    profile: KernelProfile
    round_trip_ms: float
    compute_ms: float
    overlapped_step_ms: float
    sequential_step_ms: float
    tokens_per_s_overlapped: float
    tokens_per_s_sequential: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "profile": self.profile.name,
            "round_trip_ms": self.round_trip_ms,
            "compute_ms": self.compute_ms,
            "overlapped_step_ms": self.overlapped_step_ms,
            "sequential_step_ms": self.sequential_step_ms,
            "tokens_per_s_overlapped": self.tokens_per_s_overlapped,
            "tokens_per_s_sequential": self.tokens_per_s_sequential,
        }


@dataclass(frozen=True)
class KernelProfileComparison:
    ll: ProfileCost
    ht: ProfileCost
    optimal: str

    def cost_for(self, name: str) -> ProfileCost:
        normalized = str(name).strip().lower()
        if normalized == "ll":
            return self.ll
        if normalized == "ht":
            return self.ht
        raise InvalidParameter(f"Unknown kernel profile '{name}'")

    def optimal_cost(self) -> ProfileCost:
        return self.cost_for(self.optimal)


@dataclass(frozen=True)
class ScheduleBlock:
    """
    One timed stage of a pipeline schedule.

    Attributes:
        phase: Pipeline stage.
        batch_id: Logical batch ("A" or "B").
        start_ms: Block start time (ms, >= 0).
        duration_ms: Block duration (ms, >= 0).
    """

    phase: Phase
    batch_id: str
    start_ms: float
    duration_ms: float

    def __post_init__(self) -> None:
        if not isinstance(self.phase, Phase):
            raise TypeError("ScheduleBlock.phase must be a Phase instance")
        if self.batch_id not in _BATCH_IDS:
            raise InvalidParameter(f"ScheduleBlock.batch_id must be one of {_BATCH_IDS} (got {self.batch_id!r})")
        _require_non_negative("ScheduleBlock.start_ms", self.start_ms)
        _require_non_negative("ScheduleBlock.duration_ms", self.duration_ms)

    @property
    def end_ms(self) -> float:
        return self.start_ms + self.duration_ms

    def to_dict(self) -> Dict[str, Any]:
        return {
            "phase": self.phase.value,
            "batch_id": self.batch_id,
            "start_ms": self.start_ms,
            "duration_ms": self.duration_ms,
        }


@dataclass(frozen=True)
class Schedule:
    """
    Ordered pipeline blocks for one concrete schedule instance.
    Blocks are kept in construction order; per-batch views preserve phase order.
    """

    policy: str
    split: bool
    blocks: Tuple[ScheduleBlock, ...]
    # (dispatch, compute, combine) durations the blocks were laid out with.
    phase_durations_ms: Tuple[float, float, float] = (0.0, 0.0, 0.0)

    def __post_init__(self) -> None:
        if not self.blocks:
            raise InvalidParameter("Schedule must contain at least one block")
        for block in self.blocks:
            if not isinstance(block, ScheduleBlock):
                raise TypeError("Schedule.blocks must contain ScheduleBlock instances")
        if not isinstance(self.blocks, tuple):
            raise TypeError("Schedule.blocks must be a tuple")
        if not isinstance(self.phase_durations_ms, tuple) or len(self.phase_durations_ms) != 3:
            raise InvalidParameter("Schedule.phase_durations_ms must hold (dispatch, compute, combine)")
        for name, value in zip(("dispatch", "compute", "combine"), self.phase_durations_ms):
            _require_non_negative(f"Schedule.phase_durations_ms[{name}]", value)

    def batches(self) -> Tuple[str, ...]:
        return tuple(batch for batch in _BATCH_IDS if any(b.batch_id == batch for b in self.blocks))

    def blocks_for(self, batch_id: str) -> Tuple[ScheduleBlock, ...]:
        return tuple(block for block in self.blocks if block.batch_id == batch_id)

    def block(self, phase: Phase, batch_id: str) -> Optional[ScheduleBlock]:
        for candidate in self.blocks:
            if candidate.phase == phase and candidate.batch_id == batch_id:
                return candidate
        return None

    def total_ms(self) -> float:
        """Finite-schedule makespan, including pipeline fill and drain."""
        return max(block.end_ms for block in self.blocks)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "policy": self.policy,
            "split": self.split,
            "phase_durations_ms": list(self.phase_durations_ms),
            "total_ms": self.total_ms(),
            "blocks": [block.to_dict() for block in self.blocks],
        }
