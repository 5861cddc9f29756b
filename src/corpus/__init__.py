from .loader import load_register_summary, load_texts, normalize_texts, read_table
from .transform import PredictorTransform, UnknownCategoryError, expand_level_effects, sum_contrasts

__all__ = [
    "PredictorTransform",
    "UnknownCategoryError",
    "expand_level_effects",
    "load_register_summary",
    "load_texts",
    "normalize_texts",
    "read_table",
    "sum_contrasts",
]
