from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from typing import Any, Dict, Mapping

from presets import ACCELERATOR_PRESETS, PRECISION_PRESETS, SEQ_LENGTH_PRESETS

MAX_SEQ_LENGTH = 32768


class InvalidWorkloadError(ValueError):
    def __init__(self, field: str, message: str):
        super().__init__(f"{field}: {message}")
        self.field = field


@dataclass
class WorkloadConfig:
    tensor_parallelism: int = 2
    concurrent_users: int = 64
    input_seq_length: int = 1024
    output_seq_length: int = 1024
    accelerator_type: str = "H100"
    bytes_per_parameter: float = 1

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "WorkloadConfig":
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(payload) - known)
        if unknown:
            raise InvalidWorkloadError(unknown[0], "unknown configuration key")
        config = cls()
        for key, raw in payload.items():
            setattr(config, key, parse_field(key, raw))
        return config

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def validate(self) -> None:
        for f in fields(self):
            parse_field(f.name, getattr(self, f.name))

    def apply_seq_preset(self, mode: str) -> None:
        if mode not in SEQ_LENGTH_PRESETS:
            raise InvalidWorkloadError("seq_length_mode", f"unknown preset '{mode}'")
        self.input_seq_length, self.output_seq_length = SEQ_LENGTH_PRESETS[mode]


def _parse_int(field: str, raw: Any, low: int, high: int = None) -> int:
    if isinstance(raw, bool):
        raise InvalidWorkloadError(field, f"expected an integer, got {raw!r}")
    if isinstance(raw, float):
        if not raw.is_integer():
            raise InvalidWorkloadError(field, f"expected an integer, got {raw!r}")
        value = int(raw)
    elif isinstance(raw, int):
        value = raw
    else:
        try:
            value = int(str(raw).strip())
        except ValueError:
            raise InvalidWorkloadError(field, f"expected an integer, got {raw!r}") from None
    if value < low or (high is not None and value > high):
        bound = f"between {low} and {high}" if high is not None else f">= {low}"
        raise InvalidWorkloadError(field, f"must be {bound}, got {value}")
    return value


def _parse_bytes_per_parameter(raw: Any) -> float:
    field = "bytes_per_parameter"
    if isinstance(raw, str) and raw.strip().upper() in PRECISION_PRESETS:
        return PRECISION_PRESETS[raw.strip().upper()].bytes_per_param
    try:
        value = float(raw)
    except (TypeError, ValueError):
        raise InvalidWorkloadError(field, f"expected a precision, got {raw!r}") from None
    allowed = {p.bytes_per_param for p in PRECISION_PRESETS.values()}
    if value not in allowed:
        raise InvalidWorkloadError(field, f"must be one of {sorted(allowed)}, got {value}")
    return value


def parse_field(field: str, raw: Any) -> Any:
    """
    Validate one raw input value (typically text from a form or CLI) for a
    WorkloadConfig field and return it converted to the field's type.
    """
    if field == "tensor_parallelism":
        return _parse_int(field, raw, 1)
    if field == "concurrent_users":
        return _parse_int(field, raw, 1)
    if field in ("input_seq_length", "output_seq_length"):
        return _parse_int(field, raw, 1, MAX_SEQ_LENGTH)
    if field == "accelerator_type":
        key = str(raw).strip()
        if key not in ACCELERATOR_PRESETS:
            raise InvalidWorkloadError(field, f"unknown accelerator '{raw}'")
        return key
    if field == "bytes_per_parameter":
        return _parse_bytes_per_parameter(raw)
    raise InvalidWorkloadError(field, "unknown configuration key")
