"""Tests for the explorer CLI helpers."""

import argparse
import sys
from pathlib import Path

import pytest

repo_root = Path(__file__).parent.parent
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from inference_explorer import (
    _parse_int_list,
    _parse_model_choice,
    _parse_precision,
    build_parser,
    build_state,
    plot_results,
    print_summary,
    main,
    simulate_sweep,
    sweep_values,
)
from presets import MODEL_PRESETS
from workload import InvalidWorkloadError, WorkloadConfig


class TestArgumentParsing:
    def test_model_aliases(self):
        assert _parse_model_choice("8b") == "llama-3.1-8b"
        assert _parse_model_choice("llama-3.3-70b") == "llama-3.3-70b"
        with pytest.raises(argparse.ArgumentTypeError):
            _parse_model_choice("gpt-9")

    def test_precision_names(self):
        assert _parse_precision("fp4") == 0.5
        assert _parse_precision("bf16") == 2
        with pytest.raises(argparse.ArgumentTypeError):
            _parse_precision("int3")

    def test_int_list(self):
        assert _parse_int_list("1, 2,,8") == [1, 2, 8]
        assert _parse_int_list(None) is None
        with pytest.raises(argparse.ArgumentTypeError):
            _parse_int_list("1,x")

    def test_build_state_keeps_valid_values(self, tmp_path, capsys):
        config_file = tmp_path / "workload.json"
        config_file.write_text('{"accelerator_type": "H200", "concurrent_users": 16}', encoding="utf-8")
        args = build_parser().parse_args(
            ["--config", str(config_file), "--tp", "abc", "--osl", "2048", "--no-chunked-prefill", "--model", "8b"]
        )
        state = build_state(args)
        assert state.config.accelerator_type == "H200"
        assert state.config.concurrent_users == 16
        assert state.config.tensor_parallelism == 2
        assert state.config.output_seq_length == 2048
        assert state.chunked_prefilling is False
        assert state.model == MODEL_PRESETS["llama-3.1-8b"]
        assert state.invalid_fields == {"tensor_parallelism"}
        assert "Ignoring invalid value for tensor_parallelism" in capsys.readouterr().out


class TestReports:
    def test_summary_prints_reference_numbers(self, capsys):
        args = build_parser().parse_args([])
        print_summary(build_state(args))
        out = capsys.readouterr().out
        assert "295 tokens" in out
        assert "1.64E5 bytes" in out
        assert "3.96E15 FLOP/s" in out

    def test_sweep_and_plot(self, tmp_path):
        model = MODEL_PRESETS["llama-3.3-70b"]
        sweep = simulate_sweep(WorkloadConfig(), model, "concurrency", [1, 8, 64], True)
        assert sorted(sweep) == [1, 8, 64]
        assert sweep[64]["throughput"] > sweep[1]["throughput"]
        path = plot_results(WorkloadConfig(), model, "concurrency", sweep, tmp_path)
        assert path.exists()
        assert path.name == "llama_3_3_70b_h100_fp8_concurrency.png"
        assert plot_results(WorkloadConfig(), model, "concurrency", {}, tmp_path) is None


class TestSweepValidation:
    def test_defaults_per_axis(self):
        assert sweep_values("tensor_parallelism", None) == [1, 2, 4, 8]
        assert sweep_values("concurrency", "1,16") == [1, 16]

    @pytest.mark.parametrize(
        "axis, raw",
        [("tensor_parallelism", "0,2"), ("concurrency", "-4,2"), ("concurrency", "0")],
    )
    def test_out_of_range_points_rejected(self, axis, raw):
        with pytest.raises(InvalidWorkloadError):
            sweep_values(axis, raw)

    def test_simulate_sweep_checks_each_point(self):
        model = MODEL_PRESETS["llama-3.3-70b"]
        with pytest.raises(InvalidWorkloadError):
            simulate_sweep(WorkloadConfig(), model, "tensor_parallelism", [0, 2], True)

    @pytest.mark.parametrize("raw", ["--sweep-values=0,2", "--sweep-values=-4,2", "--sweep-values=2,x"])
    def test_cli_exits_with_usage_error(self, monkeypatch, capsys, raw):
        axis = "tensor_parallelism" if "0,2" in raw else "concurrency"
        monkeypatch.setattr(sys, "argv", ["inference_explorer.py", "--sweep", axis, raw, "--skip-plots"])
        with pytest.raises(SystemExit) as excinfo:
            main()
        assert excinfo.value.code == 2
        captured = capsys.readouterr()
        assert "error:" in captured.err
        assert "tok/s" not in captured.out
