"""
Field validation and normalization for guided intake steps.

All functions are pure: they look only at the step definition and the raw
input, and report the outcome as a FieldValidation instead of raising.
"""

import re
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from .steps import StepDefinition, StepKind

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
DOB_RE = re.compile(r"^(0[1-9]|1[0-2])[-/](0[1-9]|[12]\d|3[01])[-/](19|20)\d{2}$")
_NON_DIGITS = re.compile(r"\D")

GUIDANCE_MESSAGES: Dict[StepKind, str] = {
    StepKind.DATE: "Please enter a valid date in MM-DD-YYYY format.",
    StepKind.EMAIL: "Please enter a valid email address.",
    StepKind.PHONE: "Please enter a valid phone number.",
}
DEFAULT_GUIDANCE = "Please enter a valid value and try again."


@dataclass(frozen=True)
class FieldValidation:
    valid: bool
    normalized_value: str
    message: Optional[str] = None


def digits_only(value: str) -> str:
    return _NON_DIGITS.sub("", value or "")


def format_phone(value: str) -> str:
    """Reformat whatever digits are present as (XXX) XXX-XXXX, progressively."""
    cleaned = digits_only(value)
    if len(cleaned) <= 3:
        return cleaned
    if len(cleaned) <= 6:
        return f"({cleaned[:3]}) {cleaned[3:]}"
    return f"({cleaned[:3]}) {cleaned[3:6]}-{cleaned[6:10]}"


def format_dob(value: str) -> str:
    """Reformat digits as MM-DD-YYYY, progressively."""
    cleaned = digits_only(value)
    if len(cleaned) <= 2:
        return cleaned
    if len(cleaned) <= 4:
        return f"{cleaned[:2]}-{cleaned[2:]}"
    return f"{cleaned[:2]}-{cleaned[2:4]}-{cleaned[4:8]}"


def _normalize_date(value: str) -> str:
    # Separated input is kept as typed so MM/DD/YYYY stays acceptable.
    if re.search(r"[-/]", value):
        return value
    return format_dob(value)


def is_valid_text(value: str) -> bool:
    return len(value.strip()) >= 2


def is_valid_email(value: str) -> bool:
    return bool(EMAIL_RE.match(value))


def is_valid_phone(value: str) -> bool:
    return len(digits_only(value)) == 10


def is_valid_dob(value: str) -> bool:
    return bool(DOB_RE.match(value))


def is_valid_paragraph(value: str) -> bool:
    return len(value.strip()) >= 5


def _always(_: str) -> bool:
    return True


_NORMALIZERS: Dict[StepKind, Callable[[str], str]] = {
    StepKind.PHONE: format_phone,
    StepKind.DATE: _normalize_date,
}

_PREDICATES: Dict[StepKind, Callable[[str], bool]] = {
    StepKind.TEXT: is_valid_text,
    StepKind.EMAIL: is_valid_email,
    StepKind.PHONE: is_valid_phone,
    StepKind.DATE: is_valid_dob,
    StepKind.FREEFORM_PARAGRAPH: is_valid_paragraph,
    StepKind.CHOICE: _always,
    StepKind.SLOT_PICKER: _always,
    StepKind.MESSAGE: _always,
    StepKind.CONFIRMATION: _always,
}


def normalize(step: StepDefinition, raw: str) -> str:
    value = (raw or "").strip()
    normalizer = _NORMALIZERS.get(step.kind)
    return normalizer(value) if normalizer else value


def guidance_for(step: StepDefinition) -> str:
    return GUIDANCE_MESSAGES.get(step.kind, DEFAULT_GUIDANCE)


def validate(step: StepDefinition, raw: str) -> FieldValidation:
    """
    Validate raw user input for a step.

    Both the kind's default predicate and the step's own predicate (if any)
    must hold. The normalized value is returned even when invalid so the
    caller can echo it back.
    """
    value = normalize(step, raw)

    if step.kind.takes_input and not value:
        return FieldValidation(False, value, guidance_for(step))

    checks = [_PREDICATES[step.kind]]
    if step.validate is not None:
        checks.append(step.validate)

    # Phone formatting truncates to 10 digits, so count digits on the raw input.
    checked = (raw or "").strip() if step.kind == StepKind.PHONE else value
    if all(check(checked) for check in checks):
        return FieldValidation(True, value)
    return FieldValidation(False, value, guidance_for(step))
