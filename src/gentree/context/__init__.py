"""Context selection and context block assembly."""

from gentree.context.builder import (
    ContextBuilder,
    ContextLibrary,
    PriorContent,
    ReferenceImage,
    StyleGuide,
)
from gentree.context.selection import (
    ContextSelection,
    IncludeElements,
    PreviousContentMode,
    PreviousContentSelection,
    ReferenceImageSelection,
    StyleGuideSelection,
)
from gentree.context.tokens import count_tokens

__all__ = [
    "ContextBuilder",
    "ContextLibrary",
    "ContextSelection",
    "IncludeElements",
    "PreviousContentMode",
    "PreviousContentSelection",
    "PriorContent",
    "ReferenceImage",
    "ReferenceImageSelection",
    "StyleGuide",
    "StyleGuideSelection",
    "count_tokens",
]
