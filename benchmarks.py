"""
Measured benchmark data for comparison against the analytical model.

Files live under /benchmark-data/{seqConfig}/{hardware}/{precision}.json on
the site, one list of rows per (sequence config, accelerator, precision).
A missing file means "no data for this configuration", not an error.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, replace
from typing import Any, Dict, List, Mapping, Optional, Tuple

import numpy as np
import requests

from inference_store import evaluate_workload
from model import ModelSpec
from presets import precision_name
from utils import round_half_up
from workload import WorkloadConfig

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0
MODEL_SUFFIX = "70b"
X_AXES = ("concurrency", "tensor_parallelism")


@dataclass(frozen=True)
class BenchmarkRow:
    hardware: str
    framework: str
    precision: str
    tp: int
    conc: int
    ttft_ms: float
    tpot_ms: float
    e2el_s: float
    tput_per_gpu: float

    @classmethod
    def from_json(cls, payload: Mapping[str, Any]) -> "BenchmarkRow":
        return cls(
            hardware=str(payload["Hardware"]),
            framework=str(payload["Framework"]),
            precision=str(payload["Precision"]),
            tp=int(payload["TP"]),
            conc=int(payload["Conc"]),
            ttft_ms=float(payload["TTFT (ms)"]),
            tpot_ms=float(payload["TPOT (ms)"]),
            e2el_s=float(payload["E2EL (s)"]),
            tput_per_gpu=float(payload["TPUT per GPU"]),
        )

    @property
    def decode_throughput_per_gpu(self) -> float:
        # Every user emits one token per TPOT.
        return self.conc / (self.tpot_ms / 1000) / self.tp


@dataclass
class BenchmarkResult:
    rows: Optional[List[BenchmarkRow]] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.rows is not None


def format_seq_len(length: int) -> str:
    if length >= 1000:
        return f"{round_half_up(length / 1000)}k"
    return str(length)


def seq_config(input_seq_length: int, output_seq_length: int) -> str:
    return f"{format_seq_len(input_seq_length)}{format_seq_len(output_seq_length)}-{MODEL_SUFFIX}"


def benchmark_path(config: WorkloadConfig) -> str:
    seq = seq_config(config.input_seq_length, config.output_seq_length)
    precision = precision_name(config.bytes_per_parameter)
    return f"/benchmark-data/{seq}/{config.accelerator_type}/{precision}.json"


def fetch_benchmark_rows(
    base_url: str,
    config: WorkloadConfig,
    session: Optional[requests.Session] = None,
    timeout: float = DEFAULT_TIMEOUT,
) -> BenchmarkResult:
    path = benchmark_path(config)
    label = path[len("/benchmark-data/"):-len(".json")]
    url = base_url.rstrip("/") + path
    http = session or requests
    try:
        response = http.get(url, timeout=timeout)
        if not response.ok:
            logger.info("benchmark data missing: %s (%s)", url, response.status_code)
            return BenchmarkResult(error=f"No benchmark data available for {label}")
        rows = [BenchmarkRow.from_json(item) for item in response.json()]
    except requests.RequestException as exc:
        logger.warning("benchmark fetch failed for %s: %s", url, exc)
        return BenchmarkResult(error=f"Failed to load benchmark data: {exc}")
    except (ValueError, KeyError, TypeError) as exc:
        logger.warning("malformed benchmark data at %s: %s", url, exc)
        return BenchmarkResult(error=f"Failed to load benchmark data: {exc}")
    return BenchmarkResult(rows=rows)


class BenchmarkLoader:
    """
    Fetches benchmark rows off the caller's thread. Each refresh supersedes
    the previous one: a response is applied only if no newer refresh was
    issued while it was in flight.
    """
    def __init__(
        self,
        base_url: str,
        session: Optional[requests.Session] = None,
        executor: Optional[ThreadPoolExecutor] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self._base_url = base_url
        self._session = session
        self._executor = executor or ThreadPoolExecutor(max_workers=2)
        self._timeout = timeout
        self._lock = threading.Lock()
        self._generation = 0
        self.loading = False
        self.rows: Optional[List[BenchmarkRow]] = None
        self.error: Optional[str] = None
        self.config: Optional[WorkloadConfig] = None

    def refresh(self, config: WorkloadConfig) -> Future:
        with self._lock:
            self._generation += 1
            generation = self._generation
            self.loading = True
            self.error = None
        return self._executor.submit(self._load, generation, replace(config))

    def _load(self, generation: int, config: WorkloadConfig) -> BenchmarkResult:
        # Runs on the worker; the returned future resolves after state is updated.
        try:
            result = fetch_benchmark_rows(self._base_url, config, self._session, self._timeout)
        except Exception as exc:
            logger.exception("benchmark load failed for %s", benchmark_path(config))
            result = BenchmarkResult(error=f"Failed to load benchmark data: {exc}")
        with self._lock:
            if generation != self._generation:
                logger.debug("dropping stale benchmark response %d", generation)
                return result
            self.loading = False
            self.config = config
            self.rows = result.rows
            self.error = result.error
        return result

    def matching_row(self) -> Optional[BenchmarkRow]:
        if self.rows is None or self.config is None:
            return None
        return find_matching_row(self.rows, self.config)

    def shutdown(self) -> None:
        self._executor.shutdown(wait=True)


def find_matching_row(rows: List[BenchmarkRow], config: WorkloadConfig) -> Optional[BenchmarkRow]:
    for row in rows:
        if row.tp == config.tensor_parallelism and row.conc == config.concurrent_users:
            return row
    return None


def compare_with_theory(
    row: BenchmarkRow,
    config: WorkloadConfig,
    model: Optional[ModelSpec] = None,
    chunked: bool = True,
) -> Dict[str, Dict[str, float]]:
    metrics = evaluate_workload(config, model, chunked)
    latency_s = metrics["e2e_latency"] / 1000
    tput = metrics["throughput_per_gpu"]
    actual_tput = row.decode_throughput_per_gpu
    return {
        "e2e_latency_s": {
            "theoretical": latency_s,
            "actual": row.e2el_s,
            "percent": row.e2el_s / latency_s * 100,
        },
        "throughput_per_gpu": {
            "theoretical": tput,
            "actual": actual_tput,
            "percent": actual_tput / tput * 100,
        },
    }


def theoretical_for_row(
    row: BenchmarkRow,
    config: WorkloadConfig,
    model: Optional[ModelSpec] = None,
    chunked: bool = True,
) -> Dict[str, float]:
    point = replace(config, tensor_parallelism=row.tp, concurrent_users=row.conc)
    metrics = evaluate_workload(point, model, chunked)
    return {
        "throughput_per_gpu": metrics["throughput_per_gpu"],
        "e2e_latency_s": metrics["e2e_latency"] / 1000,
    }


def chart_series(
    rows: List[BenchmarkRow],
    config: WorkloadConfig,
    x_axis: str = "concurrency",
    model: Optional[ModelSpec] = None,
    chunked: bool = True,
) -> Optional[Dict[str, List[float]]]:
    """
    Actual vs theoretical series along one axis, holding the other at the
    current config. Returns None when no row matches the held axis.
    """
    if x_axis not in X_AXES:
        raise ValueError(f"Unknown x axis '{x_axis}'. Expected one of {X_AXES}.")
    if x_axis == "concurrency":
        selected = sorted((r for r in rows if r.tp == config.tensor_parallelism), key=lambda r: r.conc)
    else:
        selected = sorted((r for r in rows if r.conc == config.concurrent_users), key=lambda r: r.tp)
    if not selected:
        return None

    series: Dict[str, List[float]] = {
        "x": [],
        "actual_throughput": [],
        "theoretical_throughput": [],
        "actual_latency": [],
        "theoretical_latency": [],
        "throughput_efficiency": [],
        "latency_efficiency": [],
    }
    for row in selected:
        theory = theoretical_for_row(row, config, model, chunked)
        actual = row.decode_throughput_per_gpu
        series["x"].append(row.conc if x_axis == "concurrency" else row.tp)
        series["actual_throughput"].append(actual)
        series["theoretical_throughput"].append(theory["throughput_per_gpu"])
        series["actual_latency"].append(row.e2el_s)
        series["theoretical_latency"].append(theory["e2e_latency_s"])
        series["throughput_efficiency"].append(actual / theory["throughput_per_gpu"] * 100)
        # lower latency is better, so theoretical over actual
        series["latency_efficiency"].append(theory["e2e_latency_s"] / row.e2el_s * 100)
    return series


def efficiency_stats(values: List[float]) -> Tuple[float, float]:
    arr = np.array(values, dtype=float)
    return float(np.mean(arr)), float(np.percentile(arr, 95))
