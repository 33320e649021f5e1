"""Context selection descriptors.

A ContextSelection names which style guides, prior content, reference
images and free text go into the context block of a generation request.
Selections are frozen and hashable so the builder can memoize on them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class PreviousContentMode(Enum):
    """Which prior content to include."""

    NONE = "none"
    ALL = "all"
    VERTICAL = "vertical"
    SELECTED = "selected"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True, slots=True)
class StyleGuideSelection:
    """Style guide toggles.

    Attributes:
        brand: Include the brand guide
        vertical: Industry verticals whose guides to include
        writing_style: Writing style guide ids
        persona: Persona guide ids
    """

    brand: bool = False
    vertical: tuple[str, ...] = ()
    writing_style: tuple[str, ...] = ()
    persona: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "brand": self.brand,
            "vertical": list(self.vertical),
            "writingStyle": list(self.writing_style),
            "persona": list(self.persona),
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> StyleGuideSelection:
        return StyleGuideSelection(
            brand=bool(data.get("brand", False)),
            vertical=tuple(data.get("vertical") or ()),
            writing_style=tuple(data.get("writingStyle") or ()),
            persona=tuple(data.get("persona") or ()),
        )


@dataclass(frozen=True, slots=True)
class IncludeElements:
    """Which fields of each prior post are serialized."""

    titles: bool = True
    synopsis: bool = True
    content: bool = False
    tags: bool = False
    metadata: bool = False

    def to_dict(self) -> dict[str, bool]:
        return {
            "titles": self.titles,
            "synopsis": self.synopsis,
            "content": self.content,
            "tags": self.tags,
            "metadata": self.metadata,
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> IncludeElements:
        defaults = IncludeElements()
        return IncludeElements(
            **{name: bool(data.get(name, value)) for name, value in defaults.to_dict().items()}
        )


@dataclass(frozen=True, slots=True)
class PreviousContentSelection:
    """Prior-content inclusion mode."""

    mode: PreviousContentMode = PreviousContentMode.NONE
    vertical_filter: str | None = None
    items: tuple[str, ...] = ()  # Content ids for SELECTED mode
    include: IncludeElements = field(default_factory=IncludeElements)

    def to_dict(self) -> dict[str, Any]:
        return {
            "mode": self.mode.value,
            "verticalFilter": self.vertical_filter,
            "items": list(self.items),
            "includeElements": self.include.to_dict(),
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> PreviousContentSelection:
        return PreviousContentSelection(
            mode=PreviousContentMode(data.get("mode", "none")),
            vertical_filter=data.get("verticalFilter"),
            items=tuple(data.get("items") or ()),
            include=IncludeElements.from_dict(data.get("includeElements") or {}),
        )


@dataclass(frozen=True, slots=True)
class ReferenceImageSelection:
    """Reference image ids by category."""

    style: tuple[str, ...] = ()
    logo: tuple[str, ...] = ()
    persona: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {"style": list(self.style), "logo": list(self.logo), "persona": list(self.persona)}

    @staticmethod
    def from_dict(data: dict[str, Any]) -> ReferenceImageSelection:
        return ReferenceImageSelection(
            style=tuple(data.get("style") or ()),
            logo=tuple(data.get("logo") or ()),
            persona=tuple(data.get("persona") or ()),
        )


@dataclass(frozen=True, slots=True)
class ContextSelection:
    """The user's chosen context for one generation request."""

    style_guides: StyleGuideSelection | None = None
    previous_content: PreviousContentSelection | None = None
    reference_images: ReferenceImageSelection | None = None
    additional_context: str | None = None

    @property
    def is_empty(self) -> bool:
        return (
            self.style_guides is None
            and self.previous_content is None
            and self.reference_images is None
            and not self.additional_context
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "styleGuides": self.style_guides.to_dict() if self.style_guides else None,
            "previousContent": (
                self.previous_content.to_dict() if self.previous_content else None
            ),
            "referenceImages": (
                self.reference_images.to_dict() if self.reference_images else None
            ),
            "customContext": self.additional_context,
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> ContextSelection:
        style = data.get("styleGuides")
        previous = data.get("previousContent")
        images = data.get("referenceImages")
        return ContextSelection(
            style_guides=StyleGuideSelection.from_dict(style) if style else None,
            previous_content=PreviousContentSelection.from_dict(previous) if previous else None,
            reference_images=ReferenceImageSelection.from_dict(images) if images else None,
            additional_context=data.get("customContext"),
        )
