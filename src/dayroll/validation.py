"""Canonical content validation and normalization."""

from collections.abc import Mapping
from typing import Any

import pydantic

from dayroll.exceptions import ValidationError
from dayroll.hashing import compute_fingerprint
from dayroll.schemas import CanonicalContent

__all__ = ["compute_fingerprint", "validate_content"]


def _issue_field(loc: tuple[Any, ...]) -> str:
    return ".".join(str(part) for part in loc) or "record"


def validate_content(candidate: Mapping[str, Any] | CanonicalContent) -> CanonicalContent:
    """
    Validate a loosely-typed candidate against the canonical schema.

    Args:
        candidate: Mapping of candidate fields (extra keys are ignored,
            a supplied fingerprint is never trusted)

    Returns:
        The normalized CanonicalContent with its fingerprint populated

    Raises:
        ValidationError: listing every violated field and the reason
    """
    if isinstance(candidate, CanonicalContent):
        return candidate
    try:
        return CanonicalContent.model_validate(dict(candidate))
    except pydantic.ValidationError as e:
        issues = [(_issue_field(err["loc"]), err["msg"]) for err in e.errors()]
        raise ValidationError(issues) from e
