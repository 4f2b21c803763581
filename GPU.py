from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class AcceleratorSpec:
    name: str
    compute_fp8: float            # TFLOPS dense
    compute_fp16: float           # TFLOPS dense (FP16/BF16)
    memory_bandwidth: float       # TB/s of HBM bandwidth
    compute_fp4: Optional[float] = None  # TFLOPS dense, None when FP4 is unsupported

    @property
    def supports_fp4(self) -> bool:
        return self.compute_fp4 is not None

    def compute_for(self, bytes_per_param: float) -> float:
        # Unsupported or unknown widths fall back to FP8.
        if bytes_per_param == 0.5:
            return self.compute_fp4 if self.compute_fp4 is not None else self.compute_fp8
        if bytes_per_param == 2:
            return self.compute_fp16
        return self.compute_fp8
