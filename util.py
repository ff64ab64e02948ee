import os
import threading
from typing import Iterable, List, Optional, Sequence, Tuple

# Report lines queued during a run and printed once, grouped by section.
_SECTIONS = (
    ("workload", "WORKLOAD"),
    ("kernels", "KERNEL PROFILES"),
    ("results", "RESULTS"),
)
_SECTION_BORDER = "=" * 60

_queue: List[Tuple[Optional[str], str]] = []
_queue_lock = threading.Lock()

_REPO_ROOT = os.path.abspath(os.environ.get("MOE_OVERLAP_REPO_ROOT", os.getcwd()))


def log_message(message: str, category: Optional[str] = None) -> None:
    """Queue one report line under ``category``; empty messages are dropped."""
    text = "" if message is None else str(message)
    if not text:
        return
    key = str(category).strip().lower() if category else None
    with _queue_lock:
        _queue.append((key, text))


def extend_log(lines: Iterable[str], category: Optional[str] = None) -> None:
    for line in lines:
        log_message(line, category=category)


def drain_log_messages() -> List[Tuple[Optional[str], str]]:
    """Return and clear the queued (category, message) pairs."""
    with _queue_lock:
        drained = _queue[:]
        del _queue[:]
    return drained


def format_log_sections(entries: Sequence[Tuple[Optional[str], str]]) -> List[str]:
    """Lay queued entries out as bordered sections; lines without a known section go last."""
    known = {key for key, _ in _SECTIONS}
    lines: List[str] = []
    for key, title in _SECTIONS:
        body = [text for category, text in entries if category == key]
        if body:
            lines.extend([_SECTION_BORDER, title, _SECTION_BORDER])
            lines.extend(body)
    if lines:
        lines.append(_SECTION_BORDER)
    lines.extend(text for category, text in entries if category not in known)
    return lines


def flush_log_queue() -> None:
    for line in format_log_sections(drain_log_messages()):
        print(line)


def relpath_display(path: str) -> str:
    """Show ``path`` relative to the repo root when it lives under it."""
    if not path:
        return ""
    abs_path = os.path.abspath(path)
    if os.path.commonpath([abs_path, _REPO_ROOT]) != _REPO_ROOT:
        return abs_path
    return os.path.relpath(abs_path, _REPO_ROOT)


def format_number(value: float, decimals: int = 3) -> str:
    """Magnitude-aware formatting for report lines."""
    if value != value or value in (float("inf"), float("-inf")):
        return "-"
    magnitude = abs(value)
    if magnitude >= 1000:
        return f"{value:.0f}"
    if magnitude >= 100:
        return f"{value:.1f}"
    if magnitude >= 10:
        return f"{value:.2f}"
    return f"{value:.{decimals}f}"


def workload_summary(params) -> List[str]:
    return [
        f"Tokens per step: {params.token_count:,}",
        f"Expert parallelism: {params.ep_ranks} ranks (top-{params.top_k}, hidden {params.hidden_dim})",
        f"Fabric: {format_number(params.latency_us, 1)} us latency, {format_number(params.bandwidth_gbps, 1)} GB/s",
        f"Compute: {format_number(params.compute_us_per_token, 2)} us/token, skew {format_number(params.skew, 2)}",
    ]
