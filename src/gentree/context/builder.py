"""Context block assembly.

The ContextBuilder serializes a ContextSelection into the text block sent
upstream with a generation request. It reads from a ContextLibrary, an
in-memory snapshot of style guides, prior content and reference images
that the caller keeps current.

build() is pure over the library: the same selection against the same
library always yields the same block, so callers may preview freely.
"""

from __future__ import annotations

import json
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from gentree.context.selection import (
    ContextSelection,
    IncludeElements,
    PreviousContentMode,
    PreviousContentSelection,
    ReferenceImageSelection,
    StyleGuideSelection,
)
from gentree.context.tokens import count_tokens, tokens_to_chars
from gentree.logging import get_logger

log = get_logger("context")

SECTION_SEPARATOR = "\n\n---\n\n"

STYLE_GUIDE_KINDS = ("brand", "vertical", "writing", "persona")
IMAGE_CATEGORIES = ("style", "logo", "persona")

# Prior content limits per mode
ALL_CONTENT_LIMIT = 50
VERTICAL_CONTENT_LIMIT = 20

PREVIEW_CHARS = 1000
OPTIMIZED_POST_CHARS = 2000

_IMAGE_LABELS = {
    "style": ("Style References", "Style reference"),
    "logo": ("Brand Assets", "Brand logo"),
    "persona": ("Character References", "Character reference"),
}


@dataclass(frozen=True, slots=True)
class StyleGuide:
    """A style guide document.

    Attributes:
        guide_id: Identifier used by writing-style and persona selections
        name: Display name, used in section headers
        kind: One of STYLE_GUIDE_KINDS
        content: Guide text
        vertical: Industry vertical for kind="vertical"
    """

    guide_id: str
    name: str
    kind: str
    content: str
    vertical: str | None = None

    def __post_init__(self) -> None:
        if self.kind not in STYLE_GUIDE_KINDS:
            raise ValueError(f"Unknown style guide kind: {self.kind}")


@dataclass(frozen=True, slots=True)
class PriorContent:
    """A previously published post usable as an example."""

    content_id: str
    title: str | None = None
    synopsis: str | None = None
    content: str | None = None
    tags: tuple[str, ...] = ()
    metadata: dict[str, Any] = field(default_factory=dict)
    vertical: str | None = None


@dataclass(frozen=True, slots=True)
class ReferenceImage:
    image_id: str
    category: str
    description: str | None = None

    def __post_init__(self) -> None:
        if self.category not in IMAGE_CATEGORIES:
            raise ValueError(f"Unknown reference image category: {self.category}")


class ContextLibrary:
    """In-memory source material for context blocks.

    Every mutation bumps ``version`` and notifies listeners so builders
    can drop memoized blocks.
    """

    def __init__(
        self,
        style_guides: Iterable[StyleGuide] = (),
        prior_content: Iterable[PriorContent] = (),
        reference_images: Iterable[ReferenceImage] = (),
    ) -> None:
        self._guides: dict[str, StyleGuide] = {g.guide_id: g for g in style_guides}
        self._content: dict[str, PriorContent] = {c.content_id: c for c in prior_content}
        self._images: dict[str, ReferenceImage] = {i.image_id: i for i in reference_images}
        self._listeners: list[Callable[[], None]] = []
        self.version = 0

    def add_style_guide(self, guide: StyleGuide) -> None:
        self._guides[guide.guide_id] = guide
        self._changed()

    def add_prior_content(self, item: PriorContent) -> None:
        self._content[item.content_id] = item
        self._changed()

    def add_reference_image(self, image: ReferenceImage) -> None:
        self._images[image.image_id] = image
        self._changed()

    def remove(self, item_id: str) -> bool:
        """Remove a guide, post or image by id. Returns whether anything was removed."""
        removed = False
        for items in (self._guides, self._content, self._images):
            if items.pop(item_id, None) is not None:
                removed = True
        if removed:
            self._changed()
        return removed

    def on_change(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Register a change listener; returns a function that removes it."""
        self._listeners.append(callback)

        def unregister() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unregister

    def _changed(self) -> None:
        self.version += 1
        for callback in list(self._listeners):
            callback()

    # Lookups

    def brand_guide(self) -> StyleGuide | None:
        return next((g for g in self._guides.values() if g.kind == "brand"), None)

    def vertical_guide(self, vertical: str) -> StyleGuide | None:
        return next(
            (g for g in self._guides.values() if g.kind == "vertical" and g.vertical == vertical),
            None,
        )

    def guide(self, guide_id: str) -> StyleGuide | None:
        return self._guides.get(guide_id)

    def all_content(self, limit: int = ALL_CONTENT_LIMIT) -> list[PriorContent]:
        return list(self._content.values())[:limit]

    def content_by_vertical(
        self, vertical: str, limit: int = VERTICAL_CONTENT_LIMIT
    ) -> list[PriorContent]:
        return [c for c in self._content.values() if c.vertical == vertical][:limit]

    def content_by_ids(self, ids: Iterable[str]) -> list[PriorContent]:
        return [self._content[i] for i in ids if i in self._content]

    def images(self, category: str, ids: Iterable[str]) -> list[ReferenceImage]:
        return [
            image
            for i in ids
            if (image := self._images.get(i)) is not None and image.category == category
        ]


class ContextBuilder:
    """Serialize context selections against a library.

    Args:
        library: Source material; an empty library is used if omitted
        max_tokens: Optional budget; oversized blocks are shrunk to fit
        model: Model whose tiktoken encoding is used for estimates
    """

    def __init__(
        self,
        library: ContextLibrary | None = None,
        *,
        max_tokens: int | None = None,
        model: str | None = None,
    ) -> None:
        self.library = library if library is not None else ContextLibrary()
        self.model = model
        self._max_tokens = max_tokens
        self._memo: dict[ContextSelection, str] = {}
        self.library.on_change(self.clear_cache)

    @property
    def max_tokens(self) -> int | None:
        return self._max_tokens

    @max_tokens.setter
    def max_tokens(self, value: int | None) -> None:
        if value != self._max_tokens:
            self._max_tokens = value
            self.clear_cache()

    def build(self, selection: ContextSelection | None) -> str:
        """Serialize ``selection`` into a context block ("" when empty)."""
        if selection is None or selection.is_empty:
            return ""
        if selection in self._memo:
            return self._memo[selection]

        style = self._style_guides(selection.style_guides)
        posts = self._previous_content(selection.previous_content, PREVIEW_CHARS)
        images = self._reference_images(selection.reference_images)
        extra = selection.additional_context or None

        block = _assemble(style, SECTION_SEPARATOR.join(posts) or None, images, extra)
        if self._max_tokens is not None:
            block = self._fit(block, self._max_tokens, style, posts, images, extra)

        self._memo[selection] = block
        return block

    def validate(self, selection: ContextSelection) -> list[str]:
        """Return configuration problems; an empty list means valid."""
        errors: list[str] = []
        previous = selection.previous_content
        if previous is not None:
            if previous.mode is PreviousContentMode.SELECTED and not previous.items:
                errors.append("Selected mode requires items")
            if previous.mode is PreviousContentMode.VERTICAL and not previous.vertical_filter:
                errors.append("Vertical mode requires a vertical filter")
        return errors

    def estimate_tokens(self, text: str | None) -> int:
        return count_tokens(text, self.model)

    def clear_cache(self) -> None:
        self._memo.clear()

    # -------------------------------------------------------------------------
    # Sections
    # -------------------------------------------------------------------------

    def _style_guides(self, selection: StyleGuideSelection | None) -> str | None:
        if selection is None:
            return None

        parts: list[str] = []
        if selection.brand and (brand := self.library.brand_guide()):
            parts.append(f"## Brand Guide\n{brand.content}")
        for vertical in selection.vertical:
            if guide := self.library.vertical_guide(vertical):
                title = vertical[:1].upper() + vertical[1:]
                parts.append(f"## {title} Industry Guide\n{guide.content}")
        for guide_id in selection.writing_style:
            if guide := self.library.guide(guide_id):
                parts.append(f"## {guide.name} Style\n{guide.content}")
        for guide_id in selection.persona:
            if guide := self.library.guide(guide_id):
                parts.append(f"## {guide.name} Persona\n{guide.content}")

        return "\n\n".join(parts) or None

    def _previous_content(
        self, selection: PreviousContentSelection | None, preview_chars: int
    ) -> list[str]:
        if selection is None:
            return []

        if selection.mode is PreviousContentMode.ALL:
            posts = self.library.all_content()
        elif selection.mode is PreviousContentMode.VERTICAL and selection.vertical_filter:
            posts = self.library.content_by_vertical(selection.vertical_filter)
        elif selection.mode is PreviousContentMode.SELECTED:
            posts = self.library.content_by_ids(selection.items)
        else:
            posts = []

        return [
            _format_post(index, post, selection.include, preview_chars)
            for index, post in enumerate(posts, start=1)
        ]

    def _reference_images(self, selection: ReferenceImageSelection | None) -> str | None:
        if selection is None:
            return None

        parts: list[str] = []
        for category in IMAGE_CATEGORIES:
            images = self.library.images(category, getattr(selection, category))
            if images:
                label, fallback = _IMAGE_LABELS[category]
                descriptions = ", ".join(i.description or fallback for i in images)
                parts.append(f"**{label}:** {descriptions}")

        return "\n\n".join(parts) or None

    # -------------------------------------------------------------------------
    # Budget
    # -------------------------------------------------------------------------

    def _fit(
        self,
        block: str,
        budget: int,
        style: str | None,
        posts: list[str],
        images: str | None,
        extra: str | None,
    ) -> str:
        """Shrink ``block`` to ``budget`` tokens.

        Steps, each applied only while still over budget: cap each prior
        post, drop visual references and additional context, then cut the
        block proportionally, never past the budget's character estimate.
        """
        tokens = self.estimate_tokens(block)
        if tokens <= budget:
            return block

        log.warning("Context too large (%d tokens > %d), optimizing", tokens, budget)

        capped = [
            post[:OPTIMIZED_POST_CHARS] + "\n\n[Content truncated...]"
            if len(post) > OPTIMIZED_POST_CHARS
            else post
            for post in posts
        ]
        block = _assemble(style, SECTION_SEPARATOR.join(capped) or None, images, extra)
        if self.estimate_tokens(block) <= budget:
            return block

        block = _assemble(style, SECTION_SEPARATOR.join(capped) or None, None, None)
        tokens = self.estimate_tokens(block)
        if tokens <= budget:
            return block

        target = min(int(len(block) * (budget / tokens)), tokens_to_chars(budget))
        return block[:target] + "\n\n[Context truncated due to size limits...]"


def _format_post(index: int, post: PriorContent, include: IncludeElements, preview: int) -> str:
    parts = [f"## Previous Blog {index}"]
    if include.titles and post.title:
        parts.append(f"**Title:** {post.title}")
    if include.synopsis and post.synopsis:
        parts.append(f"**Synopsis:** {post.synopsis}")
    if include.tags and post.tags:
        parts.append(f"**Tags:** {', '.join(post.tags)}")
    if include.content and post.content:
        text = post.content
        if len(text) > preview:
            text = text[:preview] + "..."
        parts.append(f"**Content Preview:**\n{text}")
    if include.metadata and post.metadata:
        parts.append(f"**Metadata:** {json.dumps(post.metadata, separators=(',', ':'))}")
    return "\n\n".join(parts)


def _assemble(
    style: str | None, previous: str | None, images: str | None, extra: str | None
) -> str:
    sections = [
        (heading, body)
        for heading, body in (
            ("Style Guidelines", style),
            ("Previous Content Examples", previous),
            ("Visual References", images),
            ("Additional Context", extra),
        )
        if body
    ]
    return SECTION_SEPARATOR.join(f"# {heading}\n\n{body}" for heading, body in sections)
