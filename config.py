from dataclasses import dataclass
import math
from typing import Dict, Optional

import yaml as _yaml
from yaml import YAMLError as _YAMLError

from kernel_profiles import ProfileMode, coerce_mode
from pipeline_schedule import SchedulePolicy, coerce_policy
from sweep import tokens_from_exponent
from timing_model import WorkloadParameters


_WORKLOAD_DEFAULTS = {
    "top_k": 2,
    "hidden_dim": 6144,
    "bytes_per_element": 2.0,
}

_EXECUTION_DEFAULTS = {
    "policy": "overlapped",
    "split": True,
    "kernel_profile": "auto",
}


def _require_mapping(context: str, value: object) -> Dict[str, object]:
    if not isinstance(value, dict):
        raise ValueError(f"{context} must be a mapping")
    return value


def _require_field(context: str, data: Dict[str, object], field: str) -> object:
    if field not in data:
        raise ValueError(f"{context}.{field} must be specified")
    return data[field]


def _coerce_int(value: object, context: str, *, min_value: Optional[int] = None) -> int:
    if isinstance(value, bool):
        raise ValueError(f"{context} must be an integer (got {value!r})")
    try:
        parsed = int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{context} must be an integer (got {value!r})") from exc
    if isinstance(value, float) and value != parsed:
        raise ValueError(f"{context} must be an integer (got {value!r})")
    if min_value is not None and parsed < min_value:
        raise ValueError(f"{context} must be >= {min_value}")
    return parsed


def _coerce_float(value: object, context: str) -> float:
    if isinstance(value, bool):
        raise ValueError(f"{context} must be a number (got {value!r})")
    try:
        parsed = float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{context} must be a number (got {value!r})") from exc
    if not math.isfinite(parsed):
        raise ValueError(f"{context} must be finite (got {value!r})")
    return parsed


def _coerce_bool(value: object, context: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in {"1", "true", "yes", "y", "on"}:
            return True
        if normalized in {"0", "false", "no", "n", "off"}:
            return False
    raise ValueError(f"{context} must be a boolean (got {value!r})")


def _parse_token_count(context: str, data: Dict[str, object]) -> int:
    has_count = "token_count" in data
    has_exponent = "tokens_exponent" in data
    if has_count and has_exponent:
        raise ValueError(f"{context} must set only one of token_count or tokens_exponent")
    if has_exponent:
        exponent = _coerce_float(data["tokens_exponent"], f"{context}.tokens_exponent")
        return tokens_from_exponent(exponent)
    return _coerce_int(_require_field(context, data, "token_count"), f"{context}.token_count", min_value=0)


def workload_from_dict(workload_dict: Dict[str, object]) -> WorkloadParameters:
    context = "workload_param"
    workload_dict = _require_mapping(context, workload_dict)
    params = dict(_WORKLOAD_DEFAULTS)
    params.update(workload_dict)
    return WorkloadParameters(
        token_count=_parse_token_count(context, params),
        ep_ranks=_coerce_int(_require_field(context, params, "ep_ranks"), f"{context}.ep_ranks", min_value=1),
        latency_us=_coerce_float(_require_field(context, params, "latency_us"), f"{context}.latency_us"),
        bandwidth_gbps=_coerce_float(_require_field(context, params, "bandwidth_gbps"), f"{context}.bandwidth_gbps"),
        compute_us_per_token=_coerce_float(
            _require_field(context, params, "compute_us_per_token"), f"{context}.compute_us_per_token"
        ),
        skew=_coerce_float(_require_field(context, params, "skew"), f"{context}.skew"),
        top_k=_coerce_int(params["top_k"], f"{context}.top_k", min_value=1),
        hidden_dim=_coerce_int(params["hidden_dim"], f"{context}.hidden_dim", min_value=1),
        bytes_per_element=_coerce_float(params["bytes_per_element"], f"{context}.bytes_per_element"),
    )


@dataclass(frozen=True)
class ExecutionConfig:
    policy: SchedulePolicy
    split: bool
    kernel_profile: ProfileMode

    @classmethod
    def from_dict(cls, execution_block: Optional[Dict[str, object]]) -> "ExecutionConfig":
        if execution_block is None:
            execution_block = {}
        execution_block = _require_mapping("execution_param", execution_block)
        params = dict(_EXECUTION_DEFAULTS)
        params.update(execution_block)
        return cls(
            policy=coerce_policy(str(params["policy"])),
            split=_coerce_bool(params["split"], "execution_param.split"),
            kernel_profile=coerce_mode(str(params["kernel_profile"])),
        )


@dataclass(frozen=True)
class WorkloadConfig:
    workload: WorkloadParameters
    execution: ExecutionConfig
    name: str = ""

    @classmethod
    def from_dict(cls, config_dict: Dict[str, object], name: str = "") -> "WorkloadConfig":
        config_dict = _require_mapping("config", config_dict)
        if "workload_param" not in config_dict:
            raise ValueError("config.workload_param must be specified")
        return cls(
            workload=workload_from_dict(config_dict["workload_param"]),
            execution=ExecutionConfig.from_dict(config_dict.get("execution_param")),
            name=str(config_dict.get("name", name) or name),
        )


# Slider presets: tokens per step is round(2**tokens_exponent * 8).
PRESETS: Dict[str, Dict[str, object]] = {
    "default": {
        "name": "default",
        "workload_param": {
            "tokens_exponent": 10,
            "ep_ranks": 16,
            "latency_us": 25,
            "bandwidth_gbps": 25,
            "compute_us_per_token": 0.45,
            "skew": 0.10,
        },
        "execution_param": {"policy": "overlapped", "split": True, "kernel_profile": "auto"},
    },
    "decode": {
        "name": "decode",
        "workload_param": {
            "tokens_exponent": 6,
            "ep_ranks": 16,
            "latency_us": 35,
            "bandwidth_gbps": 25,
            "compute_us_per_token": 0.45,
            "skew": 0.10,
        },
        "execution_param": {"policy": "overlapped", "split": True, "kernel_profile": "auto"},
    },
    "prefill": {
        "name": "prefill",
        "workload_param": {
            "tokens_exponent": 16,
            "ep_ranks": 32,
            "latency_us": 25,
            "bandwidth_gbps": 50,
            "compute_us_per_token": 0.60,
            "skew": 0.06,
        },
        "execution_param": {"policy": "overlapped", "split": True, "kernel_profile": "auto"},
    },
}


def preset(name: str) -> WorkloadConfig:
    normalized = str(name).strip().lower()
    if normalized not in PRESETS:
        raise ValueError(f"Unknown preset '{name}' (choose from {sorted(PRESETS)})")
    return WorkloadConfig.from_dict(PRESETS[normalized], name=normalized)


def parse_config(filename) -> WorkloadConfig:
    """Parse a yaml workload configuration file.
    Args:
            filename (str): Path to the configuration file
    Returns:
            WorkloadConfig: workload parameters plus execution options
    """
    with open(filename, "r") as f:
        try:
            config_dict = _yaml.safe_load(f)
        except _YAMLError as exc:
            hint = (
                f"Failed to parse YAML config '{filename}'. "
                "Please check indentation and the 'workload_param' / 'execution_param' sections."
            )
            raise ValueError(hint) from exc
    if config_dict is None:
        raise ValueError(f"Config '{filename}' is empty")
    return WorkloadConfig.from_dict(config_dict)
