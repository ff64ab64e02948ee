#!/usr/bin/env python3
import argparse
import atexit
import os
import sys
import time
from dataclasses import replace

import config
import util
from base_timing import evaluate_timings, payload_mib, summarize_timings
from crossover import profile_crossover_tokens, solve_compute_comm_crossover
from kernel_profiles import coerce_mode, display_name, evaluate_kernel_profiles, resolve_profile
from pipeline_schedule import build_schedule, coerce_policy, steady_state_overlapped_ms
from sweep import profile_curve, scaling_curve
from util import extend_log, flush_log_queue, log_message

# Default location for artifacts emitted by run_perf.
DEFAULT_OUTPUT_DIR = "output"
RESULTS_FILENAME = "moe_overlap_results.txt"

_program_start_time = time.perf_counter()


def _report_total_wall_time() -> None:
    elapsed = time.perf_counter() - _program_start_time
    print("MoE overlap model wall-clock time: {:.2f}s".format(elapsed))


def parse_arguments(argv=None):
    parser = argparse.ArgumentParser(
        description="Model MoE dispatch/compute/combine latency with and without dual-batch overlap."
    )
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--workload_config", help="Path to the workload configuration file.")
    source.add_argument("--preset", choices=sorted(config.PRESETS), help="Use a built-in workload preset.")
    parser.add_argument("--policy", choices=["sequential", "overlapped"], help="Override the schedule policy.")
    parser.add_argument(
        "--split",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Override micro-batch splitting of the visual schedule.",
    )
    parser.add_argument("--kernel_profile", choices=["ll", "ht", "auto"], help="Override the kernel profile.")
    parser.add_argument("--token_count", type=int, help="Override tokens per step.")
    parser.add_argument("--output_dir", default=DEFAULT_OUTPUT_DIR, help="Directory for result files.")
    parser.add_argument("--sweep", action="store_true", help="Also write token sweep CSVs.")
    return parser.parse_args(argv)


def load_workload_config(args) -> config.WorkloadConfig:
    if args.preset:
        cfg = config.preset(args.preset)
    else:
        path = os.path.expandvars(os.path.expanduser(args.workload_config))
        cfg = config.parse_config(path)

    execution = cfg.execution
    if args.policy is not None:
        execution = replace(execution, policy=coerce_policy(args.policy))
    if args.split is not None:
        execution = replace(execution, split=bool(args.split))
    if args.kernel_profile is not None:
        execution = replace(execution, kernel_profile=coerce_mode(args.kernel_profile))
    workload = cfg.workload
    if args.token_count is not None:
        workload = replace(workload, token_count=args.token_count)
    return replace(cfg, workload=workload, execution=execution)


def _threshold_text(value) -> str:
    if value is None:
        return "none"
    return "{:,.0f} tokens".format(value)


def run_model(cfg: config.WorkloadConfig, exp_dir: str, write_sweep: bool = False) -> dict:
    params = cfg.workload
    execution = cfg.execution

    timings = evaluate_timings(params)
    summary = summarize_timings(params, timings)
    schedule = build_schedule(timings, execution.policy, split=execution.split)
    kernels = evaluate_kernel_profiles(params)
    effective_mode = resolve_profile(execution.kernel_profile, params)
    effective_cost = kernels.cost_for(effective_mode.value)
    profile_threshold = profile_crossover_tokens(params)
    overlap_threshold = solve_compute_comm_crossover(params)

    extend_log(util.workload_summary(params), category="workload")
    log_message(
        "{} selected ({}): round trip {} ms, payload {} MiB".format(
            display_name(effective_mode),
            execution.kernel_profile.value,
            util.format_number(effective_cost.round_trip_ms, 2),
            util.format_number(payload_mib(params), 2),
        ),
        category="kernels",
    )
    log_message(
        "LL {} ms | HT {} ms | LL/HT crossover: {}".format(
            util.format_number(kernels.ll.round_trip_ms, 2),
            util.format_number(kernels.ht.round_trip_ms, 2),
            _threshold_text(profile_threshold),
        ),
        category="kernels",
    )
    log_message(
        "dispatch {} ms | compute {} ms | combine {} ms".format(
            util.format_number(timings.dispatch_ms, 2),
            util.format_number(timings.compute_ms, 2),
            util.format_number(timings.combine_ms, 2),
        ),
        category="results",
    )
    log_message(
        "no-overlap {} ms | DBO {} ms | comm {:.0f}%".format(
            util.format_number(timings.sequential_total_ms, 2),
            util.format_number(timings.dbo_overlapped_ms, 2),
            100 * summary.comm_fraction,
        ),
        category="results",
    )
    log_message(
        "Throughput {:,.0f} tok/s -> {:,.0f} tok/s (DBO)".format(
            summary.tokens_per_s_sequential, summary.tokens_per_s_overlapped
        ),
        category="results",
    )
    log_message(
        "Schedule ({}{}): total {} ms".format(
            schedule.policy,
            ", split" if schedule.split else "",
            util.format_number(schedule.total_ms(), 2),
        ),
        category="results",
    )

    os.makedirs(exp_dir, exist_ok=True)
    output_path = os.path.join(exp_dir, RESULTS_FILENAME)
    with open(output_path, "w") as handle:
        handle.write("==============================================\n")
        handle.write("MoE Overlap Model Results\n")
        handle.write("==============================================\n")
        if cfg.name:
            handle.write(f"Workload: {cfg.name}\n")
        handle.write("\n".join(util.workload_summary(params)))
        handle.write("\n\n")
        handle.write(f"Dispatch Time: {timings.dispatch_ms:.6f} ms\n")
        handle.write(f"Compute Time: {timings.compute_ms:.6f} ms\n")
        handle.write(f"Combine Time: {timings.combine_ms:.6f} ms\n")
        handle.write(f"Sequential Total: {timings.sequential_total_ms:.6f} ms\n")
        handle.write(f"DBO Steady State: {steady_state_overlapped_ms(timings):.6f} ms\n")
        handle.write(f"Communication Fraction: {summary.comm_fraction:.4f}\n")
        handle.write(f"Overlap Speedup: {summary.speedup:.4f}x\n")
        handle.write("\n")
        handle.write(f"Kernel Profile: {display_name(effective_mode)} (requested {execution.kernel_profile.value})\n")
        for cost in (kernels.ll, kernels.ht):
            handle.write(
                f"  {cost.profile.name.upper()}: comm {cost.round_trip_ms:.6f} ms, "
                f"step {cost.overlapped_step_ms:.6f} ms (DBO) / {cost.sequential_step_ms:.6f} ms, "
                f"{cost.tokens_per_s_overlapped:,.0f} / {cost.tokens_per_s_sequential:,.0f} tok/s\n"
            )
        handle.write(f"LL/HT Crossover: {_threshold_text(profile_threshold)}\n")
        handle.write(f"Compute/Comm Crossover: {_threshold_text(overlap_threshold)}\n")
        handle.write("\n")
        handle.write(f"Schedule: {schedule.policy} (split={schedule.split})\n")
        for block in schedule.blocks:
            handle.write(
                f"  batch {block.batch_id} {block.phase.value:<8} "
                f"start {block.start_ms:.6f} ms, duration {block.duration_ms:.6f} ms\n"
            )
        handle.write(f"Schedule Total: {schedule.total_ms():.6f} ms\n")
    log_message("Results written to {}".format(util.relpath_display(output_path)), category="results")

    if write_sweep:
        scaling_path = os.path.join(exp_dir, "token_sweep.csv")
        profile_path = os.path.join(exp_dir, "kernel_profile_sweep.csv")
        scaling_curve(params).to_csv(scaling_path, index=False)
        profile_curve(params).to_csv(profile_path, index=False)
        log_message("Token sweeps written to {}".format(util.relpath_display(exp_dir)), category="results")

    return {
        "timings": timings,
        "summary": summary,
        "schedule": schedule,
        "kernels": kernels,
        "profile_crossover_tokens": profile_threshold,
        "compute_comm_crossover_tokens": overlap_threshold,
        "output_path": output_path,
    }


def main(argv=None) -> int:
    args = parse_arguments(argv)
    try:
        cfg = load_workload_config(args)
        run_model(cfg, args.output_dir, write_sweep=args.sweep)
    except (ValueError, OSError) as exc:
        flush_log_queue()
        print(f"[ERROR] {exc}", file=sys.stderr)
        return 1
    flush_log_queue()
    return 0


if __name__ == "__main__":
    atexit.register(_report_total_wall_time)
    raise SystemExit(main())
