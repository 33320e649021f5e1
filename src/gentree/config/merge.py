"""Layered merging of config dicts (system < user < project < env)."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any


def deep_merge(base: Mapping[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    """Return ``base`` with ``override`` layered on top.

    Mappings merge key by key, lists and scalars replace, and a ``None``
    in ``override`` leaves the base value in place so a partial file can
    omit a setting without erasing it.
    """
    merged = dict(base)
    for key, value in override.items():
        if value is None:
            continue
        current = merged.get(key)
        if isinstance(current, Mapping) and isinstance(value, Mapping):
            merged[key] = deep_merge(current, value)
        else:
            merged[key] = value
    return merged


def merge_configs(*layers: Mapping[str, Any] | None) -> dict[str, Any]:
    """Fold layers left to right; empty or missing layers are skipped."""
    merged: dict[str, Any] = {}
    for layer in layers:
        if layer:
            merged = deep_merge(merged, layer)
    return merged
