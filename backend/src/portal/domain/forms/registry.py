"""Form Variant Registry.

Static, variant-indexed table declaring for every form shape its attachment
slots and its common-field extractor. Callers dispatch through
VARIANT_REGISTRY[variant] instead of branching on variant tags.
"""

from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional, Tuple

from ..attachments.slots import (
    IMAGE_TYPES,
    PDF_TYPES,
    SlotPolicy,
    archive,
    multi,
    signature,
    single,
)
from ..errors import ValidationError
from .extraction import (
    BRANCH_FIELDS,
    NAME_FIELDS,
    TOPIC_FIELDS,
    Extractor,
    make_extractor,
)
from .variants import FormVariant


@dataclass(frozen=True)
class VariantSpec:
    """Declaration of one form shape."""
    variant: FormVariant
    slots: Tuple[SlotPolicy, ...]
    extract: Extractor
    _by_name: Dict[str, SlotPolicy] = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        object.__setattr__(self, "_by_name", {slot.name: slot for slot in self.slots})

    @property
    def slot_names(self) -> Tuple[str, ...]:
        return tuple(slot.name for slot in self.slots)

    def has_slot(self, name: str) -> bool:
        return name in self._by_name

    def slot(self, name: str) -> SlotPolicy:
        """Policy for a declared slot.

        Raises:
            ValidationError: If the variant does not declare the slot
        """
        try:
            return self._by_name[name]
        except KeyError:
            raise ValidationError(
                f"Form {self.variant.value} has no attachment slot '{name}'",
                details={"slot": name, "allowed": list(self.slot_names)},
            )

    def partner(self, name: str) -> Optional[SlotPolicy]:
        """The slot that is mutually exclusive with `name`, if any."""
        policy = self.slot(name)
        if policy.exclusive_with:
            return self._by_name.get(policy.exclusive_with)
        for other in self.slots:
            if other.exclusive_with == name:
                return other
        return None


VARIANT_REGISTRY: Mapping[FormVariant, VariantSpec] = {
    FormVariant.UG_1: VariantSpec(
        variant=FormVariant.UG_1,
        slots=(
            # a single archive may replace the whole document list
            multi("documents", 5, PDF_TYPES, accepts_archive=True),
            signature("groupLeaderSignature"),
            signature("guideSignature"),
        ),
        extract=make_extractor(),
    ),
    FormVariant.UG_2: VariantSpec(
        variant=FormVariant.UG_2,
        slots=(
            multi("documents", 10),
            signature("groupLeaderSignature"),
            signature("guideSignature"),
        ),
        extract=make_extractor(),
    ),
    FormVariant.UG_3_A: VariantSpec(
        variant=FormVariant.UG_3_A,
        slots=(
            single("image", IMAGE_TYPES),
            multi("documents", 5, PDF_TYPES),
            archive(),
        ),
        extract=make_extractor(),
    ),
    FormVariant.UG_3_B: VariantSpec(
        variant=FormVariant.UG_3_B,
        slots=(
            single("paperCopy"),
            signature("groupLeaderSignature"),
            signature("guideSignature"),
            single("additionalDocuments"),
            multi("documents", 5, PDF_TYPES),
            archive(),
        ),
        extract=make_extractor(),
    ),
    FormVariant.PG_1: VariantSpec(
        variant=FormVariant.PG_1,
        slots=(
            single("studentSignature"),
            signature("guideSignature"),
            single("additionalDocuments"),
            multi("documents", 5, PDF_TYPES),
            archive(),
        ),
        extract=make_extractor(
            topic_fields=("sttpTitle",) + TOPIC_FIELDS,
            name_fields=("studentName",),
            branch_fields=("department",) + BRANCH_FIELDS,
        ),
    ),
    FormVariant.PG_2_A: VariantSpec(
        variant=FormVariant.PG_2_A,
        slots=(
            multi("bills", 10),
            archive(partner="bills"),
            signature("studentSignature"),
            signature("guideSignature"),
            signature("groupLeaderSignature"),
        ),
        extract=make_extractor(
            name_fields=("studentDetails.0.name", "studentDetails.0.studentName"),
            branch_fields=("department", "studentDetails.0.branch"),
        ),
    ),
    FormVariant.PG_2_B: VariantSpec(
        variant=FormVariant.PG_2_B,
        slots=(
            single("paperCopy"),
            signature("groupLeaderSignature"),
            signature("guideSignature"),
            multi("additionalDocuments", 5),
        ),
        extract=make_extractor(name_fields=("studentName",) + NAME_FIELDS[1:]),
    ),
    FormVariant.R1: VariantSpec(
        variant=FormVariant.R1,
        slots=(
            single("proofDocument"),
            signature("studentSignature", required=True),
            signature("guideSignature"),
            signature("hodSignature"),
            signature("sdcChairpersonSignature"),
            multi("documents", 5, PDF_TYPES),
            archive(),
        ),
        extract=make_extractor(topic_fields=("paperTitle", "sttpTitle", "projectTitle", "topic")),
    ),
}


def get_variant_spec(variant: FormVariant) -> VariantSpec:
    return VARIANT_REGISTRY[variant]

