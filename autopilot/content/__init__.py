"""Prompt composition, content formats and structure parsing."""
from .composer import ContextComposer, Enrichment
from .formats import Platform, StructureKind, resolve_format, resolve_platform
from .parser import ContentStructureParser, StructuredPart

__all__ = [
    "ContextComposer",
    "Enrichment",
    "Platform",
    "StructureKind",
    "resolve_format",
    "resolve_platform",
    "ContentStructureParser",
    "StructuredPart",
]
