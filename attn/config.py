# attn/config.py
from dataclasses import dataclass, fields, replace
from typing import Dict, Iterable, Optional

from tensor.init import check_initializer
from tensor.regularization import check_regularizer


@dataclass
class MoLAttentionConfig:
    # required; setup fails while either is unset
    unit: Optional[int] = None
    mol_k: Optional[int] = None
    # weight-layer properties
    weight_initializer: str = "xavier_uniform"
    bias_initializer: str = "zeros"
    weight_regularizer: str = "none"
    weight_regularizer_constant: float = 1.0
    # raise on NaN/Inf in outputs and gradients
    check_numerics: bool = False

    def validate(self, layer_name: str = "mol_attention") -> tuple[int, int]:
        """Check the configuration and return (unit, mol_k)."""
        if self.unit is None:
            raise ValueError(f"Number of units not provided for layer {layer_name}")
        if self.mol_k is None:
            raise ValueError(f"mol_k property not provided for layer {layer_name}")
        for key in ("unit", "mol_k"):
            v = getattr(self, key)
            if isinstance(v, bool) or not isinstance(v, int) or v <= 0:
                raise ValueError(f"{key} must be a positive integer for layer {layer_name}, got {v!r}")
        check_initializer(self.weight_initializer)
        check_initializer(self.bias_initializer)
        check_regularizer(self.weight_regularizer)
        if self.weight_regularizer_constant < 0:
            raise ValueError(f"weight_regularizer_constant must be >= 0, got {self.weight_regularizer_constant}")
        return self.unit, self.mol_k


_INT_KEYS = ("unit", "mol_k")
_FLOAT_KEYS = ("weight_regularizer_constant",)
_BOOL_KEYS = ("check_numerics",)
_TRUE = ("1", "true", "yes", "on")
_FALSE = ("0", "false", "no", "off")


def parse_properties(values: Iterable[str]) -> Dict[str, str]:
    """Split "key=value" entries into a dict with lowercased keys."""
    out: Dict[str, str] = {}
    for entry in values:
        key, sep, val = str(entry).partition("=")
        key = key.strip().lower()
        val = val.strip()
        if not sep or not key or not val:
            raise ValueError(f"Malformed property {entry!r}, expected key=value")
        out[key] = val
    return out


def _coerce(key: str, raw: str):
    try:
        if key in _INT_KEYS:
            return int(raw)
        if key in _FLOAT_KEYS:
            return float(raw)
    except ValueError:
        raise ValueError(f"Property {key} expects a number, got {raw!r}") from None
    if key in _BOOL_KEYS:
        low = raw.lower()
        if low in _TRUE:
            return True
        if low in _FALSE:
            return False
        raise ValueError(f"Property {key} expects a boolean, got {raw!r}")
    return raw.lower()


def config_from_properties(values: Iterable[str], base: Optional[MoLAttentionConfig] = None) -> MoLAttentionConfig:
    props = parse_properties(values)
    known = {f.name for f in fields(MoLAttentionConfig)}
    unknown = sorted(set(props) - known)
    if unknown:
        raise ValueError(f"Unknown MoL attention properties: {', '.join(unknown)}")
    updates = {k: _coerce(k, v) for k, v in props.items()}
    return replace(base if base is not None else MoLAttentionConfig(), **updates)


def export_properties(cfg: MoLAttentionConfig) -> Dict[str, str]:
    out: Dict[str, str] = {}
    for f in fields(cfg):
        v = getattr(cfg, f.name)
        if v is None:
            continue
        out[f.name] = str(v).lower() if isinstance(v, bool) else str(v)
    return out
