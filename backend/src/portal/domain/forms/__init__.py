"""Form variants, common-field extraction and the variant registry."""

from .extraction import DEFAULT_TEXT, DEFAULT_TOPIC, CommonFields
from .registry import VARIANT_REGISTRY, VariantSpec, get_variant_spec
from .variants import FormStatus, FormVariant, parse_status, parse_variant

__all__ = [
    "CommonFields",
    "DEFAULT_TEXT",
    "DEFAULT_TOPIC",
    "FormStatus",
    "FormVariant",
    "VARIANT_REGISTRY",
    "VariantSpec",
    "get_variant_spec",
    "parse_status",
    "parse_variant",
]
