"""Attribute diffing."""

from typing import Any, Dict, Optional
from .models import AttributeChange
from ..state.models import compute_fingerprint

__all__ = ["compute_diff", "compute_fingerprint"]


def compute_diff(before: Optional[Dict[str, Any]], after: Optional[Dict[str, Any]]) -> Dict[str, AttributeChange]:
    """
    Per-attribute changes between two attribute maps.

    Args:
        before: Recorded attributes (None when nothing is recorded)
        after: Desired attributes (None when the resource goes away)

    Returns:
        Changed attributes only, keyed by name in sorted order
    """
    before = before or {}
    after = after or {}
    diff: Dict[str, AttributeChange] = {}
    for key in sorted(set(before) | set(after)):
        old = before.get(key)
        new = after.get(key)
        if old != new or (key in before) != (key in after):
            diff[key] = AttributeChange(before=old, after=new)
    return diff
