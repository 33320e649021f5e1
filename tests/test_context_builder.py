"""Tests for context selection serialization."""

from __future__ import annotations

import pytest

from gentree.context import (
    ContextBuilder,
    ContextLibrary,
    ContextSelection,
    IncludeElements,
    PreviousContentMode,
    PreviousContentSelection,
    PriorContent,
    ReferenceImage,
    ReferenceImageSelection,
    StyleGuide,
    StyleGuideSelection,
)
from gentree.context.tokens import tokens_to_chars


@pytest.fixture
def library() -> ContextLibrary:
    return ContextLibrary(
        style_guides=[
            StyleGuide("brand", "Brand", "brand", "Be warm."),
            StyleGuide("v-health", "Healthcare", "vertical", "Cite sources.", vertical="healthcare"),
            StyleGuide("w-1", "Conversational", "writing", "Use contractions."),
            StyleGuide("p-1", "Nurse Nora", "persona", "Practical and kind."),
        ],
        prior_content=[
            PriorContent(
                "post-1",
                title="First",
                synopsis="About one",
                content="x" * 1500,
                tags=("a", "b"),
                metadata={"words": 300},
                vertical="healthcare",
            ),
            PriorContent("post-2", title="Second", synopsis="About two", vertical="finance"),
        ],
        reference_images=[
            ReferenceImage("img-1", "style", "Muted palette"),
            ReferenceImage("img-2", "logo"),
        ],
    )


@pytest.fixture
def builder(library: ContextLibrary) -> ContextBuilder:
    return ContextBuilder(library)


class TestBuild:
    """Tests for build()."""

    def test_empty_selection(self, builder: ContextBuilder) -> None:
        assert builder.build(None) == ""
        assert builder.build(ContextSelection()) == ""

    def test_style_guides(self, builder: ContextBuilder) -> None:
        block = builder.build(
            ContextSelection(
                style_guides=StyleGuideSelection(
                    brand=True, vertical=("healthcare",), writing_style=("w-1",), persona=("p-1",)
                )
            )
        )
        assert block == (
            "# Style Guidelines\n\n"
            "## Brand Guide\nBe warm.\n\n"
            "## Healthcare Industry Guide\nCite sources.\n\n"
            "## Conversational Style\nUse contractions.\n\n"
            "## Nurse Nora Persona\nPractical and kind."
        )

    def test_missing_guides_skipped(self, builder: ContextBuilder) -> None:
        block = builder.build(
            ContextSelection(style_guides=StyleGuideSelection(writing_style=("nope",)))
        )
        assert block == ""

    def test_previous_content_selected(self, builder: ContextBuilder) -> None:
        selection = ContextSelection(
            previous_content=PreviousContentSelection(
                mode=PreviousContentMode.SELECTED,
                items=("post-2", "post-1"),
                include=IncludeElements(titles=True, synopsis=False, content=True, tags=True),
            )
        )
        block = builder.build(selection)
        assert block.startswith("# Previous Content Examples\n\n## Previous Blog 1\n\n**Title:** Second")
        assert "\n\n---\n\n## Previous Blog 2\n\n**Title:** First" in block
        assert "**Tags:** a, b" in block
        assert "**Content Preview:**\n" + "x" * 1000 + "..." in block
        assert "**Synopsis:**" not in block

    def test_previous_content_vertical(self, builder: ContextBuilder) -> None:
        selection = ContextSelection(
            previous_content=PreviousContentSelection(
                mode=PreviousContentMode.VERTICAL,
                vertical_filter="finance",
                include=IncludeElements(metadata=True),
            )
        )
        block = builder.build(selection)
        assert "Second" in block
        assert "First" not in block

    def test_previous_content_none_mode(self, builder: ContextBuilder) -> None:
        selection = ContextSelection(previous_content=PreviousContentSelection())
        assert builder.build(selection) == ""

    def test_metadata_serialized_compact(self, builder: ContextBuilder) -> None:
        selection = ContextSelection(
            previous_content=PreviousContentSelection(
                mode=PreviousContentMode.ALL, include=IncludeElements(metadata=True)
            )
        )
        assert '**Metadata:** {"words":300}' in builder.build(selection)

    def test_reference_images(self, builder: ContextBuilder) -> None:
        block = builder.build(
            ContextSelection(reference_images=ReferenceImageSelection(style=("img-1",), logo=("img-2",)))
        )
        assert block == (
            "# Visual References\n\n"
            "**Style References:** Muted palette\n\n"
            "**Brand Assets:** Brand logo"
        )

    def test_sections_joined_in_order(self, builder: ContextBuilder) -> None:
        block = builder.build(
            ContextSelection(
                style_guides=StyleGuideSelection(brand=True),
                reference_images=ReferenceImageSelection(style=("img-1",)),
                additional_context="Mention the spring campaign.",
            )
        )
        sections = block.split("\n\n---\n\n")
        assert [s.split("\n", 1)[0] for s in sections] == [
            "# Style Guidelines",
            "# Visual References",
            "# Additional Context",
        ]

    def test_deterministic(self, builder: ContextBuilder, library: ContextLibrary) -> None:
        selection = ContextSelection(
            style_guides=StyleGuideSelection(brand=True), additional_context="extra"
        )
        first = builder.build(selection)
        fresh = ContextBuilder(library).build(selection)
        assert builder.build(selection) == first == fresh

    def test_library_change_invalidates_memo(
        self, builder: ContextBuilder, library: ContextLibrary
    ) -> None:
        selection = ContextSelection(style_guides=StyleGuideSelection(brand=True))
        assert "Be warm." in builder.build(selection)
        library.add_style_guide(StyleGuide("brand", "Brand", "brand", "Be bold."))
        assert "Be bold." in builder.build(selection)
        assert library.remove("brand") is True
        assert builder.build(selection) == ""


class TestBudget:
    """Tests for max_tokens optimization."""

    def test_under_budget_unchanged(self, library: ContextLibrary) -> None:
        selection = ContextSelection(additional_context="short")
        assert ContextBuilder(library, max_tokens=1000).build(selection) == ContextBuilder(
            library
        ).build(selection)

    def test_drops_optional_sections(self, library: ContextLibrary) -> None:
        selection = ContextSelection(
            style_guides=StyleGuideSelection(brand=True),
            reference_images=ReferenceImageSelection(style=("img-1",)),
            additional_context="word " * 500,
        )
        block = ContextBuilder(library, max_tokens=50).build(selection)
        assert block.startswith("# Style Guidelines")
        assert "# Additional Context" not in block
        assert "# Visual References" not in block

    def test_hard_truncation(self) -> None:
        library = ContextLibrary(
            style_guides=[StyleGuide("brand", "Brand", "brand", "lorem ipsum " * 2000)]
        )
        builder = ContextBuilder(library, max_tokens=100)
        block = builder.build(ContextSelection(style_guides=StyleGuideSelection(brand=True)))
        assert block.endswith("[Context truncated due to size limits...]")
        assert builder.estimate_tokens(block) < 200
        body = block.removesuffix("\n\n[Context truncated due to size limits...]")
        assert len(body) <= tokens_to_chars(100)

    def test_budget_change_rebuilds(self) -> None:
        library = ContextLibrary(
            style_guides=[StyleGuide("brand", "Brand", "brand", "lorem ipsum " * 2000)]
        )
        selection = ContextSelection(style_guides=StyleGuideSelection(brand=True))
        builder = ContextBuilder(library)
        full = builder.build(selection)

        builder.max_tokens = 100
        fitted = builder.build(selection)
        assert fitted != full
        assert fitted.endswith("[Context truncated due to size limits...]")

        builder.max_tokens = None
        assert builder.build(selection) == full


class TestValidate:
    """Tests for selection validation."""

    def test_valid(self, builder: ContextBuilder) -> None:
        assert builder.validate(ContextSelection()) == []

    def test_selected_needs_items(self, builder: ContextBuilder) -> None:
        selection = ContextSelection(
            previous_content=PreviousContentSelection(mode=PreviousContentMode.SELECTED)
        )
        assert builder.validate(selection) == ["Selected mode requires items"]

    def test_vertical_needs_filter(self, builder: ContextBuilder) -> None:
        selection = ContextSelection(
            previous_content=PreviousContentSelection(mode=PreviousContentMode.VERTICAL)
        )
        assert builder.validate(selection) == ["Vertical mode requires a vertical filter"]


class TestSelectionSerialization:
    """Tests for ContextSelection to_dict/from_dict."""

    def test_round_trip(self) -> None:
        selection = ContextSelection(
            style_guides=StyleGuideSelection(brand=True, persona=("p-1",)),
            previous_content=PreviousContentSelection(
                mode=PreviousContentMode.SELECTED, items=("post-1",)
            ),
            additional_context="extra",
        )
        data = selection.to_dict()
        assert data["previousContent"]["mode"] == "selected"
        assert data["customContext"] == "extra"
        assert ContextSelection.from_dict(data) == selection

    def test_hashable(self) -> None:
        a = ContextSelection(style_guides=StyleGuideSelection(vertical=("x",)))
        b = ContextSelection(style_guides=StyleGuideSelection(vertical=("x",)))
        assert hash(a) == hash(b)
