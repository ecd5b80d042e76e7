from .config import MoLAttentionConfig, parse_properties, config_from_properties, export_properties
from .mol import MoLAttention, MoLSlots, build_mol_attention, BETA_EPS
from .reference import MoLTrace, mol_attention_reference, compute_mixture_params, compute_mixture_probs

__all__ = [
    "MoLAttentionConfig",
    "parse_properties",
    "config_from_properties",
    "export_properties",
    "MoLAttention",
    "MoLSlots",
    "build_mol_attention",
    "BETA_EPS",
    "MoLTrace",
    "mol_attention_reference",
    "compute_mixture_params",
    "compute_mixture_probs",
]
