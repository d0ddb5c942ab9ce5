"""Core document machinery of the Restful Resource Engine.

This package contains the path query language, the template expander,
attribute paths and the JSON shaping operations built on them.
"""

from .expander import NO_BODY, ExpansionContext, expand, expand_json, expand_path
from .shaper import (
    PatchItem,
    apply_merge_patch,
    difference,
    filter_attrs,
    intersect,
    intersect_for_import,
    merge_bodies,
    merge_patch_diff,
    restore_paths,
)

__all__ = [
    "NO_BODY",
    "ExpansionContext",
    "expand",
    "expand_json",
    "expand_path",
    "PatchItem",
    "apply_merge_patch",
    "difference",
    "filter_attrs",
    "intersect",
    "intersect_for_import",
    "merge_bodies",
    "merge_patch_diff",
    "restore_paths",
]
