#!/usr/bin/env python3
"""
Back-of-the-envelope LLM inference explorer.

Walks through the analytical model for one serving configuration:
- compute-bound batch threshold for the chosen accelerator and precision
- prefill FLOPs and time to first token
- KV-cache footprint and per-step decode time
- end-to-end latency and batch throughput, with or without chunked prefilling

Optionally sweeps concurrency or tensor parallelism, plots the theoretical
curves and overlays measured benchmark data fetched from the site.
"""

from __future__ import annotations

import argparse
import json
import logging
from dataclasses import replace
from pathlib import Path
from typing import Dict, List, Optional

import matplotlib

matplotlib.use("Agg")

import matplotlib.pyplot as plt

from benchmarks import (
    BenchmarkResult,
    chart_series,
    compare_with_theory,
    efficiency_stats,
    fetch_benchmark_rows,
    find_matching_row,
    seq_config,
)
from inference_store import InferenceModel, evaluate_workload
from model import ModelSpec
from presets import (
    ACCELERATOR_PRESETS,
    CONCURRENCY_CHOICES,
    DEFAULT_MODEL,
    MODEL_PRESETS,
    MODEL_SELECTION_ALIASES,
    PRECISION_PRESETS,
    SEQ_LENGTH_PRESETS,
    TENSOR_PARALLELISM_CHOICES,
    precision_name,
)
from utils import (
    format_duration_ms,
    format_large_number,
    format_number,
    format_scientific,
    human_gbytes,
    slugify,
)
from workload import InvalidWorkloadError, WorkloadConfig, parse_field

logger = logging.getLogger(__name__)

SWEEP_AXES = {
    "concurrency": ("concurrent_users", CONCURRENCY_CHOICES, "Concurrent users"),
    "tensor_parallelism": ("tensor_parallelism", TENSOR_PARALLELISM_CHOICES, "Tensor parallelism"),
}


def simulate_sweep(
    config: WorkloadConfig,
    model: ModelSpec,
    axis: str,
    values: List[int],
    chunked: bool,
) -> Dict[int, Dict[str, float]]:
    field = SWEEP_AXES[axis][0]
    logger.info("sweeping %s over %s", field, values)
    results: Dict[int, Dict[str, float]] = {}
    for value in values:
        point = replace(config, **{field: parse_field(field, value)})
        results[value] = evaluate_workload(point, model, chunked)
    return results


def plot_results(
    config: WorkloadConfig,
    model: ModelSpec,
    axis: str,
    sweep: Dict[int, Dict[str, float]],
    output_dir: Path,
    measured: Optional[Dict[str, List[float]]] = None,
) -> Optional[Path]:
    if not sweep:
        return None

    output_dir.mkdir(parents=True, exist_ok=True)
    fig, (ax_tput, ax_lat) = plt.subplots(1, 2, figsize=(11, 4.5))

    xs = sorted(sweep.keys())
    ax_tput.plot(xs, [sweep[x]["throughput_per_gpu"] for x in xs], marker="o", linestyle="--", label="Theoretical")
    ax_lat.plot(xs, [sweep[x]["e2e_latency"] / 1000 for x in xs], marker="o", linestyle="--", label="Theoretical")
    if measured:
        ax_tput.plot(measured["x"], measured["actual_throughput"], marker="s", label="Actual")
        ax_lat.plot(measured["x"], measured["actual_latency"], marker="s", label="Actual")

    xlabel = SWEEP_AXES[axis][2]
    accelerator = ACCELERATOR_PRESETS[config.accelerator_type]
    precision = precision_name(config.bytes_per_parameter)
    fig.suptitle(
        f"{model.name} | {accelerator.name} {precision} | "
        f"ISL {config.input_seq_length} / OSL {config.output_seq_length}"
    )
    ax_tput.set_xlabel(xlabel)
    ax_tput.set_ylabel("Throughput per GPU (tok/s)")
    ax_lat.set_xlabel(xlabel)
    ax_lat.set_ylabel("E2E latency (s)")
    for ax in (ax_tput, ax_lat):
        ax.set_xscale("log", base=2)
        ax.grid(True, alpha=0.2)
        ax.legend()

    name = f"{slugify(model.name)}_{config.accelerator_type.lower()}_{precision.lower()}_{axis}.png"
    output_path = output_dir / name
    fig.tight_layout()
    fig.savefig(output_path, dpi=160)
    plt.close(fig)
    return output_path


def print_summary(state: InferenceModel) -> None:
    config = state.config
    model = state.model
    m = state.snapshot()
    accelerator = ACCELERATOR_PRESETS[config.accelerator_type]
    n_bytes = config.bytes_per_parameter
    users = config.concurrent_users
    isl = config.input_seq_length
    osl = config.output_seq_length

    print("=" * 80)
    print(f"{accelerator.name} x {config.tensor_parallelism}  |  {precision_name(n_bytes)}  |  {model.name}")
    print(f"Concurrent users: {users}, ISL: {isl}, OSL: {osl}")
    print(
        f"Compute: {format_large_number(m['total_compute'])} FLOP/s, "
        f"bandwidth: {format_large_number(m['total_memory_bandwidth'])} bytes/s"
    )
    print()
    print(
        f"Compute-bound threshold: B >= {format_large_number(m['total_compute'])} / "
        f"({format_large_number(m['total_memory_bandwidth'])} / {n_bytes}) / 2 = "
        f"{m['compute_bound_threshold']} tokens"
    )
    print()
    print("Prefill")
    print(
        f"  matmul:    {isl} x 2 x {format_large_number(model.num_params)} = "
        f"{format_large_number(m['matmul_flops'])} FLOPs"
    )
    print(
        f"  attention: 4 x {isl}^2 x {model.hidden_size} x {model.num_layers} = "
        f"{format_large_number(m['attention_flops'])} FLOPs"
    )
    print(
        f"  time:      {format_large_number(m['prefill_flops'])} / {format_large_number(m['total_compute'])} = "
        f"{format_number(m['prefill_time'])} ms (TTFT)"
    )
    print(f"  total:     {format_scientific(m['prefill_flops'])} FLOPs per request")
    print()
    print(f"Decode (GQA: {format_number(model.gqa_group_size, 0)} query heads per KV head)")
    print(
        f"  KV/token:  2 x {model.num_layers} x {model.num_kv_heads} x {model.head_dim} x {n_bytes} = "
        f"{format_large_number(m['kv_cache_per_token'])} bytes"
    )
    print(
        f"  KV/seq:    {format_number(m['avg_seq_length'], 0)} tokens avg = "
        f"{format_number(m['kv_cache_per_sequence'] / 1e6)} MB"
    )
    print(
        f"  per step:  ({format_number(human_gbytes(m['model_weights']), 1)} + "
        f"{format_number(human_gbytes(users * m['kv_cache_per_sequence']), 1)}) GB / "
        f"{format_number(m['total_memory_bandwidth'] / 1e12, 1)} TB/s = "
        f"{format_number(m['decode_time'])} ms per token (TPOT)"
    )
    print()
    print(
        f"E2E latency: {format_number(m['prefill_time'], 1)} ms + {osl} x "
        f"{format_number(m['decode_time'])} ms = {format_duration_ms(m['e2e_latency'])}"
    )
    print()
    print(f"Chunked prefilling: {'on' if state.chunked_prefilling else 'off'}")
    print(
        f"  budget {state.max_num_batched_tokens} - {m['decode_tokens_used']} decode tokens = "
        f"{m['available_tokens_for_prefill']} tokens for prefill "
        f"({m['complete_prefills_fit']} complete prefills per step)"
    )
    print(
        f"  capacity per cycle {format_number(m['available_tokens_for_prefill'] * osl, 0)}, "
        f"needed {format_number(m['total_prefill_tokens_needed'], 0)} -> "
        f"{'fully overlapped' if m['can_overlap_prefills'] else 'prefills add overhead'}"
    )
    print(
        f"  non-overlapped prefill tokens: {users} x ({isl} + {osl}) - {osl} x "
        f"{m['compute_bound_threshold']} = {format_number(m['non_overlapped_prefill_tokens'], 0)}"
    )
    print(
        f"  batch time: sequential {format_number(m['total_time'])} ms "
        f"(prefill {format_number(m['prefill_time_percent'], 1)}%), "
        f"chunked {format_number(m['total_time_chunked'])} ms"
    )
    print()
    print(
        f"Throughput: {m['total_output_tokens']} tokens / "
        f"{format_number(m['total_time_with_mode'] / 1000)} s = "
        f"{format_number(m['throughput'], 0)} tok/s "
        f"({format_number(m['throughput_per_gpu'], 0)} tok/s per GPU)"
    )
    print()


def print_sweep(axis: str, sweep: Dict[int, Dict[str, float]]) -> None:
    label = SWEEP_AXES[axis][2]
    header = f"  {label:>18} | Threshold | TTFT (ms) | TPOT (ms) | E2E (s) | Tok/s | Tok/s/GPU"
    print(header)
    print("-" * len(header))
    for value in sorted(sweep):
        m = sweep[value]
        print(
            f"  {value:18d} | {m['compute_bound_threshold']:9d} | {m['prefill_time']:9.1f} | "
            f"{m['decode_time']:9.2f} | {m['e2e_latency'] / 1000:7.2f} | "
            f"{m['throughput']:5.0f} | {m['throughput_per_gpu']:9.0f}"
        )
    print()


def print_benchmark(result: BenchmarkResult, state: InferenceModel, axis: str) -> Optional[Dict[str, List[float]]]:
    config = state.config
    if not result.ok:
        print(result.error)
        return None
    row = find_matching_row(result.rows, config)
    if row is None:
        print(
            f"No benchmark data for TP={config.tensor_parallelism}, Conc={config.concurrent_users}"
        )
    else:
        comparison = compare_with_theory(row, config, state.model, state.chunked_prefilling)
        lat = comparison["e2e_latency_s"]
        tput = comparison["throughput_per_gpu"]
        print("  Metric         | Theoretical |    Actual | % of Theoretical")
        print(
            f"  E2E latency    | {lat['theoretical']:9.2f} s | {lat['actual']:7.2f} s | "
            f"{lat['percent']:8.2f}%"
        )
        print(
            f"  Throughput/GPU | {tput['theoretical']:7.0f} t/s | {tput['actual']:5.0f} t/s | "
            f"{tput['percent']:8.2f}%"
        )
        print(f"  Framework: {row.framework} | TP={row.tp} | Conc={row.conc}")

    series = chart_series(result.rows, config, axis, state.model, state.chunked_prefilling)
    if series is None:
        print("  No benchmark points along the sweep axis.")
        return None
    mean_eff, p95_eff = efficiency_stats(series["throughput_efficiency"])
    print(f"  Throughput efficiency along {axis}: mean {mean_eff:.1f}%, p95 {p95_eff:.1f}%")
    print()
    return series


def _parse_int_list(raw: Optional[str]) -> Optional[List[int]]:
    if raw is None:
        return None
    values = []
    for chunk in raw.split(","):
        chunk = chunk.strip()
        if not chunk:
            continue
        try:
            values.append(int(chunk))
        except ValueError:
            raise argparse.ArgumentTypeError(f"Invalid integer value '{chunk}'")
    return values


def sweep_values(axis: str, raw: Optional[str]) -> List[int]:
    """Sweep points from --sweep-values (or the axis presets), range-checked like any other input."""
    field, defaults, _ = SWEEP_AXES[axis]
    values = _parse_int_list(raw) or defaults
    return [parse_field(field, value) for value in values]


def _parse_model_choice(raw: str) -> str:
    if raw in MODEL_PRESETS:
        return raw
    alias_key = raw.strip().lower()
    if alias_key in MODEL_SELECTION_ALIASES:
        return MODEL_SELECTION_ALIASES[alias_key]
    raise argparse.ArgumentTypeError(
        f"Unknown model '{raw}'. Choices: {', '.join(sorted(MODEL_PRESETS))} (or 8b, 70b, 405b)."
    )


def _parse_precision(raw: str) -> float:
    key = raw.strip().upper()
    if key == "BF16":
        key = "FP16"
    if key not in PRECISION_PRESETS:
        raise argparse.ArgumentTypeError(
            f"Unknown precision '{raw}'. Choices: {', '.join(PRECISION_PRESETS)}."
        )
    return PRECISION_PRESETS[key].bytes_per_param


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Analytical LLM inference explorer")
    parser.add_argument(
        "--config",
        type=Path,
        help="JSON file with WorkloadConfig fields; flags below override it.",
    )
    parser.add_argument(
        "--accelerator",
        choices=sorted(ACCELERATOR_PRESETS.keys()),
        help="Accelerator type (default H100).",
    )
    parser.add_argument(
        "--precision",
        type=_parse_precision,
        help="Weight/KV precision: FP4, FP8 or FP16 (default FP8). FP4 falls back to FP8 where unsupported.",
    )
    parser.add_argument("--tp", type=str, help="Tensor-parallel degree.")
    parser.add_argument("--concurrency", type=str, help="Concurrent users (batch size).")
    parser.add_argument("--isl", type=str, help="Input sequence length.")
    parser.add_argument("--osl", type=str, help="Output sequence length.")
    parser.add_argument(
        "--seq-preset",
        choices=sorted(SEQ_LENGTH_PRESETS.keys()),
        help="ISL/OSL preset; --isl/--osl override it.",
    )
    parser.add_argument(
        "--model",
        type=_parse_model_choice,
        default=DEFAULT_MODEL,
        help="Model preset (llama-3.3-70b, llama-3.1-8b, llama-3.1-405b).",
    )
    parser.add_argument(
        "--no-chunked-prefill",
        action="store_true",
        help="Run prefills back to back instead of interleaving them with decodes.",
    )
    parser.add_argument(
        "--sweep",
        choices=sorted(SWEEP_AXES.keys()),
        help="Sweep the theoretical model along one axis.",
    )
    parser.add_argument(
        "--sweep-values",
        type=str,
        help="Comma-separated values for the sweep axis.",
    )
    parser.add_argument(
        "--benchmark-url",
        type=str,
        help="Site root serving /benchmark-data/... JSON (e.g. https://fergusfinn.com).",
    )
    parser.add_argument("--skip-plots", action="store_true", help="Disable plot generation.")
    parser.add_argument("--output-dir", type=Path, default=Path("plots"))
    parser.add_argument("--log-level", default="WARNING")
    return parser


def build_state(args: argparse.Namespace) -> InferenceModel:
    config = WorkloadConfig()
    if args.config:
        payload = json.loads(args.config.read_text(encoding="utf-8"))
        config = WorkloadConfig.from_dict(payload)
    if args.seq_preset:
        config.apply_seq_preset(args.seq_preset)
    state = InferenceModel(
        config,
        model=MODEL_PRESETS[args.model],
        chunked_prefilling=not args.no_chunked_prefill,
    )
    overrides = {
        "accelerator_type": args.accelerator,
        "bytes_per_parameter": args.precision,
        "tensor_parallelism": args.tp,
        "concurrent_users": args.concurrency,
        "input_seq_length": args.isl,
        "output_seq_length": args.osl,
    }
    for field, raw in overrides.items():
        if raw is None:
            continue
        if not state.apply_input(field, raw):
            print(f"Ignoring invalid value for {field}: {raw!r} (keeping {getattr(state.config, field)})")
    return state


def main() -> None:
    parser = build_parser()
    args = parser.parse_args()
    logging.basicConfig(level=args.log_level.upper(), format="%(levelname)s %(name)s: %(message)s")

    axis = args.sweep or "concurrency"
    try:
        state = build_state(args)
        values = sweep_values(axis, args.sweep_values) if args.sweep else None
    except (InvalidWorkloadError, argparse.ArgumentTypeError, json.JSONDecodeError) as exc:
        parser.error(str(exc))

    print_summary(state)
    config = state.config

    sweep = None
    if values:
        sweep = simulate_sweep(config, state.model, axis, values, state.chunked_prefilling)
        print_sweep(axis, sweep)

    measured = None
    if args.benchmark_url:
        print(f"Benchmark data ({seq_config(config.input_seq_length, config.output_seq_length)})")
        result = fetch_benchmark_rows(args.benchmark_url, config)
        measured = print_benchmark(result, state, axis)

    if sweep and not args.skip_plots:
        plot_path = plot_results(config, state.model, axis, sweep, args.output_dir, measured)
        if plot_path:
            print(f"Saved plot: {plot_path}")


if __name__ == "__main__":
    main()
