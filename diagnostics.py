# diagnostics.py
# Validation helpers to ensure band lists are well-formed before they are sent or persisted.

from __future__ import annotations
from typing import Any, List, Tuple
from schema import Band, GAIN_LIMITS


def _as_band(band: Any) -> Band | None:
    if isinstance(band, Band):
        return band
    if isinstance(band, dict):
        try:
            return Band.from_dict(band)
        except (TypeError, ValueError):
            return None
    return None


def validate_band(band: Any) -> Tuple[bool, List[str]]:
    """Single band check. Returns (ok, list_of_errors)."""
    b = _as_band(band)
    if b is None:
        return False, [f"band is not a dict with numeric low/high/gain: {band!r}"]
    errors: List[str] = []
    if not b.is_finite():
        errors.append(f"band values must be finite: {b}")
        return False, errors
    if b.low < 0:
        errors.append(f"low must be >= 0: {b.low}")
    if b.low >= b.high:
        errors.append(f"low must be below high: {b.low} >= {b.high}")
    lo, hi = GAIN_LIMITS
    if not (lo <= b.gain <= hi):
        errors.append(f"gain out of range {lo}..{hi}: {b.gain}")
    return (len(errors) == 0), errors


def validate_bands(bands: Any) -> Tuple[bool, List[str]]:
    """Validate a band list. Returns (ok, list_of_errors)."""
    if not isinstance(bands, (list, tuple)):
        return False, ["bands is not a list"]
    errs: List[str] = []
    for i, band in enumerate(bands):
        ok, e = validate_band(band)
        if not ok:
            errs.extend([f"band {i}: {msg}" for msg in e])
    return (len(errs) == 0), errs
