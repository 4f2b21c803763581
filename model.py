from dataclasses import dataclass


@dataclass(frozen=True)
class PrecisionConfig:
    name: str
    bytes_per_param: float


@dataclass(frozen=True)
class ModelSpec:
    name: str
    model_size: float         # billions of parameters
    head_dim: int
    hidden_size: int
    num_kv_heads: int
    num_attention_heads: int
    num_layers: int
    intermediate_size: int
    vocab_size: int

    @property
    def num_params(self) -> float:
        return self.model_size * 1e9

    @property
    def gqa_group_size(self) -> float:
        # Query heads sharing one KV head (1 for plain MHA).
        if self.num_kv_heads <= 0:
            return 1.0
        return self.num_attention_heads / self.num_kv_heads
