import math
import re

from GPU import AcceleratorSpec
from model import ModelSpec

# Per-step token budget for chunked prefilling (vLLM default in the benchmarks).
MAX_NUM_BATCHED_TOKENS = 8192

FLOPS_PER_PARAM = 2.0  # multiply + add per weight per token
TERA = 1e12
MS_PER_SECOND = 1000.0


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def total_compute(accelerator: AcceleratorSpec, tensor_parallelism: int, bytes_per_param: float) -> float:
    """FLOP/s across all tensor-parallel ranks at the given precision."""
    return tensor_parallelism * accelerator.compute_for(bytes_per_param) * TERA


def total_memory_bandwidth(accelerator: AcceleratorSpec, tensor_parallelism: int) -> float:
    """Bytes/s of HBM bandwidth across all tensor-parallel ranks."""
    return tensor_parallelism * accelerator.memory_bandwidth * TERA


def compute_bound_threshold(compute: float, bandwidth: float, bytes_per_param: float) -> int:
    """
    Smallest batch for which matmuls become compute bound.
    Each weight byte loaded serves 2 FLOPs per token in the batch.
    """
    return round_half_up(compute / (bandwidth / bytes_per_param) / FLOPS_PER_PARAM)


def matmul_flops(input_seq_length: int, model: ModelSpec) -> float:
    return FLOPS_PER_PARAM * input_seq_length * model.num_params


def attention_flops(input_seq_length: int, model: ModelSpec) -> float:
    # QK^T and scores@V, each 2 * ISL^2 * D per layer
    return 4.0 * input_seq_length**2 * model.hidden_size * model.num_layers


def prefill_flops(input_seq_length: int, model: ModelSpec) -> float:
    return matmul_flops(input_seq_length, model) + attention_flops(input_seq_length, model)


def prefill_time_ms(flops: float, compute: float) -> float:
    return flops / compute * MS_PER_SECOND


def kv_cache_per_token(model: ModelSpec, bytes_per_param: float) -> float:
    # 2 (key + value) * layers * KV heads * head_dim * bytes per element
    return 2.0 * model.num_layers * model.num_kv_heads * model.head_dim * bytes_per_param


def avg_seq_length(input_seq_length: int, output_seq_length: int) -> float:
    # Halfway through generation on average.
    return input_seq_length + output_seq_length / 2


def model_weight_bytes(model: ModelSpec, bytes_per_param: float) -> float:
    return model.num_params * bytes_per_param


def bytes_per_decode(weights: float, concurrent_users: int, kv_per_sequence: float) -> float:
    return weights + concurrent_users * kv_per_sequence


def decode_time_ms(total_bytes: float, bandwidth: float) -> float:
    return total_bytes / bandwidth * MS_PER_SECOND


def e2e_latency_ms(prefill_ms: float, output_seq_length: int, decode_ms: float) -> float:
    return prefill_ms + output_seq_length * decode_ms


def available_tokens_for_prefill(concurrent_users: int) -> int:
    # Steady state: every user decodes one token per step.
    return MAX_NUM_BATCHED_TOKENS - concurrent_users


def can_overlap_prefills(available: int, concurrent_users: int, input_seq_length: int, output_seq_length: int) -> bool:
    capacity = available * output_seq_length
    needed = concurrent_users * input_seq_length
    return capacity >= needed


def non_overlapped_prefill_tokens(
    concurrent_users: int,
    input_seq_length: int,
    output_seq_length: int,
    threshold: int,
) -> float:
    return max(0, concurrent_users * (input_seq_length + output_seq_length) - output_seq_length * threshold)


def non_overlapped_prefill_time_ms(tokens: float, model: ModelSpec, compute: float) -> float:
    return tokens * FLOPS_PER_PARAM * model.num_params / compute * MS_PER_SECOND


def chunked_total_time_ms(
    total_decode_ms: float,
    total_prefill_ms: float,
    can_overlap: bool,
    non_overlapped_ms: float,
) -> float:
    if can_overlap:
        return total_decode_ms
    # Chunking never does worse than running the prefills back to back.
    return total_decode_ms + min(non_overlapped_ms, total_prefill_ms)


def throughput_tokens_per_s(output_tokens: float, time_ms: float) -> float:
    return output_tokens / time_ms * MS_PER_SECOND


def human_gbytes(value_bytes: float) -> float:
    return value_bytes / 1e9


def slugify(name: str) -> str:
    return "".join(ch.lower() if ch.isalnum() else "_" for ch in name).strip("_")


def format_number(num: float, decimals: int = 2) -> str:
    return f"{num:.{decimals}f}"


def format_scientific(num: float, decimals: int = 3) -> str:
    # 1.235e+3 rather than Python's zero-padded 1.235e+03
    mantissa, exponent = f"{num:.{decimals}e}".split("e")
    return f"{mantissa}e{int(exponent):+d}"


def format_large_number(num: float) -> str:
    if num >= 1e3:
        exponent = math.floor(math.log10(num))
        mantissa = num / 10**exponent
        return f"{mantissa:.2f}E{exponent}"
    return f"{num:.2f}"


_LARGE_NUMBER_RE = re.compile(r"^\s*(-?\d+(?:\.\d+)?)(?:[eE]([+-]?\d+))?\s*$")


def parse_large_number(text: str) -> float:
    """Inverse of format_large_number, accurate to the printed decimals."""
    match = _LARGE_NUMBER_RE.match(text)
    if not match:
        raise ValueError(f"Not a formatted number: '{text}'")
    mantissa = float(match.group(1))
    exponent = int(match.group(2)) if match.group(2) else 0
    return mantissa * 10**exponent


def format_duration_ms(ms: float) -> str:
    if ms < 1000:
        return f"{ms:.0f} ms"
    return f"{ms / 1000:.2f} s"
