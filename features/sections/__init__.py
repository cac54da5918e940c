"""
Sections feature — canonical document sections and request normalization.

Public API:
    from features.sections import normalize_sections, heading_for
"""

from features.sections.selection import (
    ALL_SECTION_IDS,
    DEFAULT_SECTIONS,
    SECTION_HEADINGS,
    heading_for,
    heading_mapping_text,
    normalize_sections,
)

__all__ = [
    "ALL_SECTION_IDS",
    "DEFAULT_SECTIONS",
    "SECTION_HEADINGS",
    "heading_for",
    "heading_mapping_text",
    "normalize_sections",
]
