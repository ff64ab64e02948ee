import math
from enum import Enum
from typing import Tuple, Union

from timing_model import BATCH_A, BATCH_B, InvalidParameter, Phase, Schedule, ScheduleBlock, Timings


class SchedulePolicy(Enum):
    SEQUENTIAL = "sequential"
    OVERLAPPED = "overlapped"


def coerce_policy(policy: Union[str, SchedulePolicy]) -> SchedulePolicy:
    if isinstance(policy, SchedulePolicy):
        return policy
    if isinstance(policy, str):
        normalized = policy.strip().lower()
        for candidate in SchedulePolicy:
            if candidate.value == normalized:
                return candidate
    raise InvalidParameter(
        f"schedule policy must be one of {[p.value for p in SchedulePolicy]} (got {policy!r})"
    )


def _check_duration(name: str, value: float) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        raise InvalidParameter(f"{name} must be a finite number (got {value!r})")
    if value < 0:
        raise InvalidParameter(f"{name} must be >= 0 (got {value})")
    return float(value)


def split_durations(timings: Timings, split: bool) -> Tuple[float, float, float]:
    """Phase durations fed to the schedule; micro-batch splitting halves each one."""
    d = _check_duration("dispatch_ms", timings.dispatch_ms)
    c = _check_duration("compute_ms", timings.compute_ms)
    b = _check_duration("combine_ms", timings.combine_ms)
    if split:
        return d / 2, c / 2, b / 2
    return d, c, b


def steady_state_overlapped_ms(timings: Timings) -> float:
    """Asymptotic per-step time under ideal pipelining, max(d + b, c)."""
    return max(timings.dispatch_ms + timings.combine_ms, timings.compute_ms)


def _sequential_blocks(d: float, c: float, b: float) -> Tuple[ScheduleBlock, ...]:
    t = 0.0
    dispatch_a = ScheduleBlock(Phase.DISPATCH, BATCH_A, t, d)
    t += d
    compute_a = ScheduleBlock(Phase.COMPUTE, BATCH_A, t, c)
    t += c
    combine_a = ScheduleBlock(Phase.COMBINE, BATCH_A, t, b)
    return dispatch_a, compute_a, combine_a


def _overlapped_blocks(d: float, c: float, b: float) -> Tuple[ScheduleBlock, ...]:
    # Two serial resources: the fabric carries every dispatch and combine,
    # the compute engine runs one batch's experts at a time.
    dispatch_a_start = 0.0
    dispatch_a_end = dispatch_a_start + d
    dispatch_b_start = dispatch_a_end
    dispatch_b_end = dispatch_b_start + d

    compute_a_start = dispatch_a_end
    compute_a_end = compute_a_start + c
    compute_b_start = max(dispatch_b_end, compute_a_end)
    compute_b_end = compute_b_start + c

    combine_a_start = max(compute_a_end, dispatch_b_end)
    combine_a_end = combine_a_start + b
    combine_b_start = max(compute_b_end, combine_a_end)

    return (
        ScheduleBlock(Phase.DISPATCH, BATCH_A, dispatch_a_start, d),
        ScheduleBlock(Phase.COMPUTE, BATCH_A, compute_a_start, c),
        ScheduleBlock(Phase.COMBINE, BATCH_A, combine_a_start, b),
        ScheduleBlock(Phase.DISPATCH, BATCH_B, dispatch_b_start, d),
        ScheduleBlock(Phase.COMPUTE, BATCH_B, compute_b_start, c),
        ScheduleBlock(Phase.COMBINE, BATCH_B, combine_b_start, b),
    )


def build_schedule(timings: Timings, policy: Union[str, SchedulePolicy], split: bool = False) -> Schedule:
    """
    Lay out explicit stage blocks for one pipeline instance.

    Sequential runs a single batch A through dispatch, compute and combine.
    Overlapped (dual-batch overlap) interleaves batches A and B on a shared
    fabric and a shared compute engine; its makespan includes pipeline fill
    and drain, so it generally exceeds ``steady_state_overlapped_ms``.
    """
    if not isinstance(timings, Timings):
        raise TypeError("build_schedule expects a Timings instance")
    resolved = coerce_policy(policy)
    d, c, b = split_durations(timings, bool(split))

    if resolved == SchedulePolicy.SEQUENTIAL:
        blocks = _sequential_blocks(d, c, b)
    else:
        blocks = _overlapped_blocks(d, c, b)

    return Schedule(
        policy=resolved.value,
        split=bool(split),
        blocks=blocks,
        phase_durations_ms=(d, c, b),
    )
