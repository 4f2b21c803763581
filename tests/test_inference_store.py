"""Tests for the inference cost model and its reactive wiring."""

import itertools
import math
import sys
from pathlib import Path

import pytest

repo_root = Path(__file__).parent.parent
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from inference_store import METRIC_NAMES, InferenceModel, evaluate_workload
from presets import ACCELERATOR_PRESETS, MODEL_PRESETS
from workload import InvalidWorkloadError, WorkloadConfig


class TestReferenceConfiguration:
    """Default page configuration: Llama 70B on 2x H100 at FP8, 1k/1k, 64 users."""

    def test_kv_cache_and_compute(self):
        metrics = evaluate_workload(WorkloadConfig())
        assert metrics["kv_cache_per_token"] == 163840
        assert metrics["total_compute"] == pytest.approx(3958e12)
        assert metrics["compute_bound_threshold"] == 295

    def test_latency_breakdown(self):
        metrics = evaluate_workload(WorkloadConfig())
        assert metrics["prefill_time"] == pytest.approx((2 * 1024 * 70e9 + 4 * 1024**2 * 8192 * 80) / 3958e12 * 1000)
        assert metrics["avg_seq_length"] == 1536
        decode_bytes = 70e9 + 64 * 1536 * 163840
        assert metrics["decode_time"] == pytest.approx(decode_bytes / 6.7e12 * 1000)
        assert metrics["e2e_latency"] == pytest.approx(metrics["prefill_time"] + 1024 * metrics["decode_time"])

    def test_prefills_overlap_at_default_load(self):
        metrics = evaluate_workload(WorkloadConfig())
        assert metrics["available_tokens_for_prefill"] == 8192 - 64
        assert metrics["complete_prefills_fit"] == (8192 - 64) // 1024
        assert metrics["can_overlap_prefills"] is True
        assert metrics["total_time_chunked"] == pytest.approx(metrics["total_decode_time"])

    def test_sequential_mode_adds_prefill(self):
        chunked = evaluate_workload(WorkloadConfig(), chunked=True)
        sequential = evaluate_workload(WorkloadConfig(), chunked=False)
        assert sequential["total_time_with_mode"] == pytest.approx(chunked["total_time"])
        assert sequential["throughput"] < chunked["throughput"]


def _valid_configs():
    for accelerator, tp, users, (isl, osl), n_bytes in itertools.product(
        ("H100", "MI300X", "B200"),
        (1, 8),
        (1, 64, 4096),
        ((128, 32768), (8192, 1024), (32768, 1)),
        (0.5, 1, 2),
    ):
        yield WorkloadConfig(tp, users, isl, osl, accelerator, n_bytes)


class TestInvariants:
    def test_metrics_finite_and_non_negative(self):
        for config in _valid_configs():
            metrics = evaluate_workload(config)
            for name in ("prefill_time", "decode_time", "e2e_latency", "throughput"):
                value = metrics[name]
                assert math.isfinite(value) and value >= 0, (name, config)

    def test_chunked_never_slower(self):
        for config in _valid_configs():
            metrics = evaluate_workload(config)
            assert metrics["total_time_chunked"] <= metrics["total_time"] + 1e-9, config

    def test_saturated_batch_cannot_hide_prefills(self):
        metrics = evaluate_workload(WorkloadConfig(8, 4096, 8192, 1024, "H100", 1))
        assert metrics["available_tokens_for_prefill"] == 4096
        assert metrics["can_overlap_prefills"] is False
        assert metrics["total_time_chunked"] > metrics["total_decode_time"]


class TestInferenceModel:
    def test_graph_matches_single_pass(self):
        config = WorkloadConfig(4, 256, 8192, 1024, "MI325X", 2)
        state = InferenceModel(config, model=MODEL_PRESETS["llama-3.1-405b"])
        expected = evaluate_workload(config, MODEL_PRESETS["llama-3.1-405b"])
        snapshot = state.snapshot()
        assert set(snapshot) == set(METRIC_NAMES)
        for name in METRIC_NAMES:
            if isinstance(expected[name], float):
                assert snapshot[name] == pytest.approx(expected[name]), name
            else:
                assert snapshot[name] == expected[name], name

    def test_graph_tracks_mutations(self):
        state = InferenceModel()
        state.set_config(concurrent_users=16, accelerator_type="H200")
        state.set_chunked_prefilling(False)
        expected = evaluate_workload(state.config, chunked=False)
        assert state.get("throughput") == pytest.approx(expected["throughput"])
        assert state.get("total_time_with_mode") == pytest.approx(expected["total_time"])

    def test_unrelated_mutation_does_not_recompute(self):
        state = InferenceModel()
        state.snapshot()
        counts = dict(state.store.recompute_count)
        state.set_config(output_seq_length=2048)
        state.snapshot()
        recomputed = state.store.recompute_count
        for name in ("matmul_flops", "attention_flops", "prefill_time", "compute_bound_threshold", "model_weights"):
            assert recomputed[name] == counts[name], name
        assert recomputed["decode_time"] == counts["decode_time"] + 1

    def test_model_switch(self):
        state = InferenceModel()
        before = state.get("model_weights")
        state.set_model(MODEL_PRESETS["llama-3.1-8b"])
        assert state.get("model_weights") == pytest.approx(8e9)
        assert before == pytest.approx(70e9)

    def test_fp4_falls_back_on_unsupported_hardware(self):
        state = InferenceModel(WorkloadConfig(accelerator_type="H100", bytes_per_parameter=0.5))
        assert state.config.bytes_per_parameter == 1
        state.set_config(accelerator_type="B200", bytes_per_parameter=0.5)
        assert state.config.bytes_per_parameter == 0.5
        assert state.get("total_compute") == pytest.approx(2 * ACCELERATOR_PRESETS["B200"].compute_fp4 * 1e12)
        state.set_config(accelerator_type="MI300X")
        assert state.config.bytes_per_parameter == 1

    def test_callers_config_left_untouched(self):
        config = WorkloadConfig(accelerator_type="H100", bytes_per_parameter=0.5)
        state = InferenceModel(config)
        assert config.bytes_per_parameter == 0.5
        assert state.config.bytes_per_parameter == 1
        state.set_config(concurrent_users=8)
        assert config.concurrent_users == 64

    def test_invalid_input_keeps_previous_value(self):
        state = InferenceModel()
        assert state.apply_input("tensor_parallelism", "abc") is False
        assert state.config.tensor_parallelism == 2
        assert state.invalid_fields == {"tensor_parallelism"}
        assert state.apply_input("input_seq_length", "40000") is False
        assert state.config.input_seq_length == 1024
        assert state.apply_input("tensor_parallelism", "4") is True
        assert state.config.tensor_parallelism == 4
        assert state.invalid_fields == {"input_seq_length"}

    def test_set_config_raises_for_programmatic_misuse(self):
        state = InferenceModel()
        with pytest.raises(InvalidWorkloadError):
            state.set_config(concurrent_users=0)

    def test_constructor_validates(self):
        with pytest.raises(InvalidWorkloadError):
            InferenceModel(WorkloadConfig(accelerator_type="TPU"))

    def test_seq_preset(self):
        state = InferenceModel()
        state.apply_seq_preset("1024/8192")
        assert state.get("avg_seq_length") == 1024 + 4096

    def test_subscribe_to_metric(self):
        state = InferenceModel()
        seen = []
        state.get("throughput")
        unsubscribe = state.subscribe("throughput", seen.append)
        state.set_config(concurrent_users=128)
        assert len(seen) == 1
        assert seen[0] == pytest.approx(evaluate_workload(state.config)["throughput"])
        unsubscribe()
        state.set_config(concurrent_users=32)
        assert len(seen) == 1
        assert state.max_num_batched_tokens == 8192
