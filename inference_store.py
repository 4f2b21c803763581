"""
Inference cost model wired as a reactive graph.

InferenceModel holds one atom per workload field (plus the model architecture and the
chunked-prefilling toggle) and one derived node per metric. Reading a metric
recomputes only what changed since the last read.

evaluate_workload computes the same metrics in a single pass for callers that
sweep many configurations (charts, benchmark comparison).
"""

from __future__ import annotations

import logging
from dataclasses import fields, replace
from typing import Any, Callable, Dict, Optional, Set

from model import ModelSpec
from presets import ACCELERATOR_PRESETS, DEFAULT_MODEL, MODEL_PRESETS, precision_name, supported_precisions
from reactive import Store
from utils import (
    MAX_NUM_BATCHED_TOKENS,
    attention_flops,
    available_tokens_for_prefill,
    avg_seq_length,
    bytes_per_decode,
    can_overlap_prefills,
    chunked_total_time_ms,
    compute_bound_threshold,
    decode_time_ms,
    e2e_latency_ms,
    kv_cache_per_token,
    matmul_flops,
    model_weight_bytes,
    non_overlapped_prefill_time_ms,
    non_overlapped_prefill_tokens,
    prefill_flops,
    prefill_time_ms,
    throughput_tokens_per_s,
    total_compute,
    total_memory_bandwidth,
)
from workload import InvalidWorkloadError, WorkloadConfig, parse_field

logger = logging.getLogger(__name__)

CONFIG_FIELDS = tuple(f.name for f in fields(WorkloadConfig))

METRIC_NAMES = (
    "total_compute",
    "total_memory_bandwidth",
    "compute_bound_threshold",
    "matmul_flops",
    "attention_flops",
    "prefill_flops",
    "prefill_time",
    "kv_cache_per_token",
    "avg_seq_length",
    "kv_cache_per_sequence",
    "model_weights",
    "total_bytes_per_decode",
    "decode_time",
    "e2e_latency",
    "total_prefill_time",
    "total_decode_time",
    "total_time",
    "decode_tokens_used",
    "available_tokens_for_prefill",
    "complete_prefills_fit",
    "total_prefill_tokens_needed",
    "can_overlap_prefills",
    "non_overlapped_prefill_tokens",
    "non_overlapped_prefill_time",
    "total_time_chunked",
    "total_time_with_mode",
    "total_output_tokens",
    "throughput",
    "throughput_per_gpu",
    "prefill_time_percent",
)


def _fallback_precision(config: WorkloadConfig) -> None:
    if precision_name(config.bytes_per_parameter) not in supported_precisions(config.accelerator_type):
        logger.debug("%s has no FP4 support; switching to FP8", config.accelerator_type)
        config.bytes_per_parameter = 1


def evaluate_workload(
    config: WorkloadConfig,
    model: Optional[ModelSpec] = None,
    chunked: bool = True,
) -> Dict[str, Any]:
    model = model or MODEL_PRESETS[DEFAULT_MODEL]
    accelerator = ACCELERATOR_PRESETS[config.accelerator_type]
    tp = config.tensor_parallelism
    users = config.concurrent_users
    isl = config.input_seq_length
    osl = config.output_seq_length
    n_bytes = config.bytes_per_parameter

    compute = total_compute(accelerator, tp, n_bytes)
    bandwidth = total_memory_bandwidth(accelerator, tp)
    threshold = compute_bound_threshold(compute, bandwidth, n_bytes)

    matmul = matmul_flops(isl, model)
    attention = attention_flops(isl, model)
    flops = prefill_flops(isl, model)
    prefill = prefill_time_ms(flops, compute)

    kv_token = kv_cache_per_token(model, n_bytes)
    seq_len = avg_seq_length(isl, osl)
    kv_sequence = seq_len * kv_token
    weights = model_weight_bytes(model, n_bytes)
    decode_bytes = bytes_per_decode(weights, users, kv_sequence)
    decode = decode_time_ms(decode_bytes, bandwidth)

    total_prefill = users * prefill
    total_decode = osl * decode
    total = total_prefill + total_decode

    available = available_tokens_for_prefill(users)
    overlap = can_overlap_prefills(available, users, isl, osl)
    leftover_tokens = non_overlapped_prefill_tokens(users, isl, osl, threshold)
    leftover_time = non_overlapped_prefill_time_ms(leftover_tokens, model, compute)
    total_chunked = chunked_total_time_ms(total_decode, total_prefill, overlap, leftover_time)
    total_with_mode = total_chunked if chunked else total

    output_tokens = users * osl
    tput = throughput_tokens_per_s(output_tokens, total_with_mode)

    return {
        "total_compute": compute,
        "total_memory_bandwidth": bandwidth,
        "compute_bound_threshold": threshold,
        "matmul_flops": matmul,
        "attention_flops": attention,
        "prefill_flops": flops,
        "prefill_time": prefill,
        "kv_cache_per_token": kv_token,
        "avg_seq_length": seq_len,
        "kv_cache_per_sequence": kv_sequence,
        "model_weights": weights,
        "total_bytes_per_decode": decode_bytes,
        "decode_time": decode,
        "e2e_latency": prefill + osl * decode,
        "total_prefill_time": total_prefill,
        "total_decode_time": total_decode,
        "total_time": total,
        "decode_tokens_used": users,
        "available_tokens_for_prefill": available,
        "complete_prefills_fit": max(0, available) // isl,
        "total_prefill_tokens_needed": users * isl,
        "can_overlap_prefills": overlap,
        "non_overlapped_prefill_tokens": leftover_tokens,
        "non_overlapped_prefill_time": leftover_time,
        "total_time_chunked": total_chunked,
        "total_time_with_mode": total_with_mode,
        "total_output_tokens": output_tokens,
        "throughput": tput,
        "throughput_per_gpu": tput / tp,
        "prefill_time_percent": total_prefill / total * 100,
    }


class InferenceModel:
    def __init__(
        self,
        config: Optional[WorkloadConfig] = None,
        model: Optional[ModelSpec] = None,
        chunked_prefilling: bool = True,
    ):
        config = replace(config) if config is not None else WorkloadConfig()
        config.validate()
        _fallback_precision(config)
        self.invalid_fields: Set[str] = set()
        self._store = Store()
        for name in CONFIG_FIELDS:
            self._store.atom(name, getattr(config, name))
        self._store.atom("model", model or MODEL_PRESETS[DEFAULT_MODEL])
        self._store.atom("chunked_prefilling", chunked_prefilling)
        self._build_graph()

    def _build_graph(self) -> None:
        s = self._store
        s.computed("accelerator", ("accelerator_type",), lambda key: ACCELERATOR_PRESETS[key])
        s.computed(
            "total_compute",
            ("accelerator", "tensor_parallelism", "bytes_per_parameter"),
            total_compute,
        )
        s.computed(
            "total_memory_bandwidth",
            ("accelerator", "tensor_parallelism"),
            total_memory_bandwidth,
        )
        s.computed(
            "compute_bound_threshold",
            ("total_compute", "total_memory_bandwidth", "bytes_per_parameter"),
            compute_bound_threshold,
        )

        # Prefill
        s.computed("matmul_flops", ("input_seq_length", "model"), matmul_flops)
        s.computed("attention_flops", ("input_seq_length", "model"), attention_flops)
        s.computed("prefill_flops", ("matmul_flops", "attention_flops"), lambda a, b: a + b)
        s.computed("prefill_time", ("prefill_flops", "total_compute"), prefill_time_ms)

        # Decode
        s.computed("kv_cache_per_token", ("model", "bytes_per_parameter"), kv_cache_per_token)
        s.computed("avg_seq_length", ("input_seq_length", "output_seq_length"), avg_seq_length)
        s.computed(
            "kv_cache_per_sequence",
            ("avg_seq_length", "kv_cache_per_token"),
            lambda seq_len, per_token: seq_len * per_token,
        )
        s.computed("model_weights", ("model", "bytes_per_parameter"), model_weight_bytes)
        s.computed(
            "total_bytes_per_decode",
            ("model_weights", "concurrent_users", "kv_cache_per_sequence"),
            bytes_per_decode,
        )
        s.computed("decode_time", ("total_bytes_per_decode", "total_memory_bandwidth"), decode_time_ms)

        s.computed(
            "e2e_latency",
            ("prefill_time", "output_seq_length", "decode_time"),
            e2e_latency_ms,
        )

        # Batch timing
        s.computed(
            "total_prefill_time",
            ("concurrent_users", "prefill_time"),
            lambda users, prefill: users * prefill,
        )
        s.computed(
            "total_decode_time",
            ("output_seq_length", "decode_time"),
            lambda osl, decode: osl * decode,
        )
        s.computed("total_time", ("total_prefill_time", "total_decode_time"), lambda p, d: p + d)

        # Chunked prefilling
        s.computed("decode_tokens_used", ("concurrent_users",), lambda users: users)
        s.computed("available_tokens_for_prefill", ("decode_tokens_used",), available_tokens_for_prefill)
        s.computed(
            "complete_prefills_fit",
            ("available_tokens_for_prefill", "input_seq_length"),
            lambda available, isl: max(0, available) // isl,
        )
        s.computed(
            "total_prefill_tokens_needed",
            ("concurrent_users", "input_seq_length"),
            lambda users, isl: users * isl,
        )
        s.computed(
            "can_overlap_prefills",
            ("available_tokens_for_prefill", "concurrent_users", "input_seq_length", "output_seq_length"),
            can_overlap_prefills,
        )
        s.computed(
            "non_overlapped_prefill_tokens",
            ("concurrent_users", "input_seq_length", "output_seq_length", "compute_bound_threshold"),
            non_overlapped_prefill_tokens,
        )
        s.computed(
            "non_overlapped_prefill_time",
            ("non_overlapped_prefill_tokens", "model", "total_compute"),
            non_overlapped_prefill_time_ms,
        )
        s.computed(
            "total_time_chunked",
            ("total_decode_time", "total_prefill_time", "can_overlap_prefills", "non_overlapped_prefill_time"),
            chunked_total_time_ms,
        )
        s.computed(
            "total_time_with_mode",
            ("total_time", "total_time_chunked", "chunked_prefilling"),
            lambda sequential, chunked, enabled: chunked if enabled else sequential,
        )

        # Throughput
        s.computed(
            "total_output_tokens",
            ("concurrent_users", "output_seq_length"),
            lambda users, osl: users * osl,
        )
        s.computed("throughput", ("total_output_tokens", "total_time_with_mode"), throughput_tokens_per_s)
        s.computed(
            "throughput_per_gpu",
            ("throughput", "tensor_parallelism"),
            lambda tput, tp: tput / tp,
        )
        s.computed(
            "prefill_time_percent",
            ("total_prefill_time", "total_time"),
            lambda prefill, total: prefill / total * 100,
        )

    @property
    def store(self) -> Store:
        return self._store

    @property
    def config(self) -> WorkloadConfig:
        return WorkloadConfig(**{name: self._store.get(name) for name in CONFIG_FIELDS})

    @property
    def model(self) -> ModelSpec:
        return self._store.get("model")

    @property
    def chunked_prefilling(self) -> bool:
        return self._store.get("chunked_prefilling")

    @property
    def max_num_batched_tokens(self) -> int:
        return MAX_NUM_BATCHED_TOKENS

    def set_model(self, model: ModelSpec) -> None:
        self._store.set("model", model)

    def set_chunked_prefilling(self, enabled: bool) -> None:
        self._store.set("chunked_prefilling", bool(enabled))

    def set_config(self, **changes: Any) -> None:
        """Apply already-typed field values; raises InvalidWorkloadError."""
        config = self.config
        for name, value in changes.items():
            setattr(config, name, parse_field(name, value))
        _fallback_precision(config)
        self._store.update({name: getattr(config, name) for name in CONFIG_FIELDS})

    def apply_input(self, field: str, raw: Any) -> bool:
        """
        Apply a raw user input. Invalid input keeps the previous value and
        flags the field; a later valid input clears the flag.
        """
        try:
            self.set_config(**{field: raw})
        except InvalidWorkloadError as exc:
            logger.info("rejected input %s", exc)
            self.invalid_fields.add(field)
            return False
        self.invalid_fields.discard(field)
        return True

    def apply_seq_preset(self, mode: str) -> None:
        config = self.config
        config.apply_seq_preset(mode)
        self.set_config(
            input_seq_length=config.input_seq_length,
            output_seq_length=config.output_seq_length,
        )

    def get(self, name: str) -> Any:
        return self._store.get(name)

    def snapshot(self) -> Dict[str, Any]:
        return {name: self._store.get(name) for name in METRIC_NAMES}

    def subscribe(self, name: str, listener: Callable[[Any], None]) -> Callable[[], None]:
        return self._store.subscribe(name, listener)
