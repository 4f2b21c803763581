from typing import Dict, Tuple

from GPU import AcceleratorSpec
from model import ModelSpec, PrecisionConfig

# Peak dense numbers from vendor datasheets; no efficiency derating.
ACCELERATOR_PRESETS: Dict[str, AcceleratorSpec] = {
    "MI355X": AcceleratorSpec(
        "AMD MI355X",
        compute_fp8=5000,
        compute_fp16=2500,
        memory_bandwidth=8.0,
        compute_fp4=10000,
    ),
    "B200": AcceleratorSpec(
        "NVIDIA B200",
        compute_fp8=4500,
        compute_fp16=2250,
        memory_bandwidth=8.0,
        compute_fp4=9000,
    ),
    "MI325X": AcceleratorSpec(
        "AMD MI325X",
        compute_fp8=2610,
        compute_fp16=1307,
        memory_bandwidth=6.0,
    ),
    "MI300X": AcceleratorSpec(
        "AMD MI300X",
        compute_fp8=2610,
        compute_fp16=1307,
        memory_bandwidth=5.3,
    ),
    "H200": AcceleratorSpec(
        "NVIDIA H200",
        compute_fp8=1979,
        compute_fp16=989,
        memory_bandwidth=4.8,
    ),
    "H100": AcceleratorSpec(
        "NVIDIA H100",
        compute_fp8=1979,
        compute_fp16=989,
        memory_bandwidth=3.35,
    ),
}


PRECISION_PRESETS: Dict[str, PrecisionConfig] = {
    "FP4": PrecisionConfig(name="FP4", bytes_per_param=0.5),
    "FP8": PrecisionConfig(name="FP8", bytes_per_param=1),
    "FP16": PrecisionConfig(name="FP16", bytes_per_param=2),
}

DEFAULT_PRECISION = "FP8"


MODEL_PRESETS: Dict[str, ModelSpec] = {
    # https://huggingface.co/unsloth/Llama-3.3-70B-Instruct/blob/main/config.json
    "llama-3.3-70b": ModelSpec(
        name="Llama-3.3 70B",
        model_size=70,
        head_dim=128,
        hidden_size=8192,
        num_kv_heads=8,
        num_attention_heads=64,
        num_layers=80,
        intermediate_size=28672,
        vocab_size=128256,
    ),
    "llama-3.1-8b": ModelSpec(
        name="Llama-3.1 8B",
        model_size=8,
        head_dim=128,
        hidden_size=4096,
        num_kv_heads=8,
        num_attention_heads=32,
        num_layers=32,
        intermediate_size=14336,
        vocab_size=128256,
    ),
    "llama-3.1-405b": ModelSpec(
        name="Llama-3.1 405B",
        model_size=405,
        head_dim=128,
        hidden_size=16384,
        num_kv_heads=8,
        num_attention_heads=128,
        num_layers=126,
        intermediate_size=53248,
        vocab_size=128256,
    ),
}

DEFAULT_MODEL = "llama-3.3-70b"

MODEL_SELECTION_ALIASES = {
    "70b": "llama-3.3-70b",
    "8b": "llama-3.1-8b",
    "405b": "llama-3.1-405b",
}


# (input_seq_length, output_seq_length) pairs offered next to the custom entry.
SEQ_LENGTH_PRESETS: Dict[str, Tuple[int, int]] = {
    "1024/1024": (1024, 1024),
    "1024/8192": (1024, 8192),
    "8192/1024": (8192, 1024),
}

TENSOR_PARALLELISM_CHOICES = [1, 2, 4, 8]
CONCURRENCY_CHOICES = [1, 2, 4, 8, 16, 32, 64, 128]


def precision_name(bytes_per_param: float) -> str:
    for name, precision in PRECISION_PRESETS.items():
        if precision.bytes_per_param == bytes_per_param:
            return name
    return DEFAULT_PRECISION


def supported_precisions(accelerator_key: str) -> Dict[str, PrecisionConfig]:
    accelerator = ACCELERATOR_PRESETS[accelerator_key]
    return {
        name: precision
        for name, precision in PRECISION_PRESETS.items()
        if name != "FP4" or accelerator.supports_fp4
    }
