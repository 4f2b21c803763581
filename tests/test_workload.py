"""Tests for WorkloadConfig parsing and validation."""

import sys
from pathlib import Path

import pytest

repo_root = Path(__file__).parent.parent
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from workload import MAX_SEQ_LENGTH, InvalidWorkloadError, WorkloadConfig, parse_field


class TestParseField:
    def test_accepts_integer_text(self):
        assert parse_field("tensor_parallelism", " 4 ") == 4
        assert parse_field("concurrent_users", 4.0) == 4

    @pytest.mark.parametrize("raw", ["abc", "", "12.5", 0, -1, True, 2.5])
    def test_rejects_bad_user_counts(self, raw):
        with pytest.raises(InvalidWorkloadError) as excinfo:
            parse_field("concurrent_users", raw)
        assert excinfo.value.field == "concurrent_users"

    def test_sequence_length_bounds(self):
        assert parse_field("input_seq_length", 1) == 1
        assert parse_field("output_seq_length", MAX_SEQ_LENGTH) == MAX_SEQ_LENGTH
        with pytest.raises(InvalidWorkloadError):
            parse_field("input_seq_length", MAX_SEQ_LENGTH + 1)

    def test_precision_by_name_or_width(self):
        assert parse_field("bytes_per_parameter", "fp16") == 2
        assert parse_field("bytes_per_parameter", "0.5") == 0.5
        with pytest.raises(InvalidWorkloadError):
            parse_field("bytes_per_parameter", 3)

    def test_unknown_accelerator_and_field(self):
        with pytest.raises(InvalidWorkloadError):
            parse_field("accelerator_type", "TPUv9")
        with pytest.raises(InvalidWorkloadError):
            parse_field("pipeline_parallelism", 2)

    def test_error_is_a_value_error(self):
        with pytest.raises(ValueError):
            parse_field("tensor_parallelism", "x")


class TestWorkloadConfig:
    def test_defaults(self):
        config = WorkloadConfig()
        assert config.to_dict() == {
            "tensor_parallelism": 2,
            "concurrent_users": 64,
            "input_seq_length": 1024,
            "output_seq_length": 1024,
            "accelerator_type": "H100",
            "bytes_per_parameter": 1,
        }
        config.validate()

    def test_from_dict_parses_values(self):
        config = WorkloadConfig.from_dict({"tensor_parallelism": "8", "accelerator_type": "B200", "bytes_per_parameter": "FP4"})
        assert config.tensor_parallelism == 8
        assert config.accelerator_type == "B200"
        assert config.bytes_per_parameter == 0.5

    def test_from_dict_rejects_unknown_keys(self):
        with pytest.raises(InvalidWorkloadError) as excinfo:
            WorkloadConfig.from_dict({"pp": 2})
        assert excinfo.value.field == "pp"

    def test_validate_catches_direct_assignment(self):
        config = WorkloadConfig(tensor_parallelism=0)
        with pytest.raises(InvalidWorkloadError):
            config.validate()

    def test_seq_presets(self):
        config = WorkloadConfig()
        config.apply_seq_preset("8192/1024")
        assert (config.input_seq_length, config.output_seq_length) == (8192, 1024)
        with pytest.raises(InvalidWorkloadError):
            config.apply_seq_preset("2048/2048")
