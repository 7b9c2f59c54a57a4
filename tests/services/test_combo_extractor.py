"""
Tests for combo extraction — n-gram windows, per-field dedup, subtitle
incrementality, brand detection and combo typing.
"""

import pytest

from asoaudit.services.combo_extractor import detect_brand_tokens, extract_combos
from asoaudit.services.models import ComboType, TextField
from asoaudit.services.token_relevance import TokenRelevanceClassifier
from asoaudit.services.tokenizer import tokenize


def _texts(combos):
    return [c.text for c in combos]


class TestWindows:
    """Test contiguous window extraction."""

    def test_title_windows(self):
        combos = extract_combos(tokenize("Duolingo: Language Lessons"))
        assert _texts(combos.title) == [
            "duolingo language",
            "duolingo language lessons",
            "language lessons",
        ]

    def test_window_length_bounds(self):
        tokens = tokenize("one two three four five")
        combos = extract_combos(tokens, min_length=2, max_length=2)
        assert all(c.length == 2 for c in combos.title)
        assert len(combos.title) == 4

    def test_stopword_only_window_skipped(self):
        tokens = tokenize("Of The Year", stopwords={"of", "the"})
        combos = extract_combos(tokens)
        assert _texts(combos.title) == ["of the year", "the year"]

    def test_duplicates_removed_within_field(self):
        combos = extract_combos(tokenize("money money money"))
        assert _texts(combos.title) == ["money money", "money money money"]

    def test_span_and_position(self):
        combos = extract_combos(tokenize("Photo | Editor Pro"))
        editor_pro = combos.get("editor pro")
        assert editor_pro.position == 1
        assert editor_pro.span == (8, 18)

    def test_invalid_range_raises(self):
        with pytest.raises(ValueError):
            extract_combos(tokenize("a b c"), min_length=3, max_length=2)

    def test_empty_input(self):
        combos = extract_combos([], [])
        assert combos.title == []
        assert combos.subtitle == []
        assert combos.unique == []


class TestIncrementality:
    """Test subtitle combos against title combos."""

    def test_subtitle_repeat_not_incremental(self):
        title = tokenize("Budget Planner")
        subtitle = tokenize("Budget Planner and Tracker", TextField.SUBTITLE, stopwords={"and"})
        combos = extract_combos(title, subtitle)

        flags = {c.text: c.incremental for c in combos.subtitle}
        assert flags["budget planner"] is False
        assert flags["planner and tracker"] is True

    def test_unique_is_title_plus_incremental_subtitle(self):
        title = tokenize("Budget Planner")
        subtitle = tokenize("Budget Planner and Tracker", TextField.SUBTITLE, stopwords={"and"})
        combos = extract_combos(title, subtitle)

        assert _texts(combos.unique) == [
            "budget planner",
            "budget planner and",
            "budget planner and tracker",
            "planner and",
            "planner and tracker",
            "and tracker",
        ]
        assert combos.unique[0].field == TextField.TITLE

    def test_fully_new_subtitle(self):
        title = tokenize("Duolingo: Language Lessons")
        subtitle = tokenize("Learn Spanish, French & more", TextField.SUBTITLE)
        combos = extract_combos(title, subtitle)

        assert len(combos.subtitle) == 6
        assert all(c.incremental for c in combos.subtitle)
        assert len(combos.unique) == 9


class TestBrandDetection:
    """Test brand token detection."""

    def test_segment_before_separator(self):
        tokens = tokenize("Duolingo: Language Lessons")
        assert detect_brand_tokens("Duolingo: Language Lessons", tokens) == {"duolingo"}

    def test_spaced_dash_separator(self):
        title = "Mint - Budget Tracker"
        assert detect_brand_tokens(title, tokenize(title)) == {"mint"}

    def test_hyphenated_word_is_not_a_separator(self):
        title = "Step-by-step Budget"
        assert detect_brand_tokens(title, tokenize(title)) == set()

    def test_high_tier_words_stay_generic(self):
        title = "Budget App: Expense Tracker"
        relevance = TokenRelevanceClassifier(table={"budget": 3})
        assert detect_brand_tokens(title, tokenize(title, relevance=relevance)) == {"app"}

    def test_app_name_wins(self):
        tokens = tokenize("Calm Sleep Sounds")
        assert detect_brand_tokens("Calm Sleep Sounds", tokens, app_name="Calm") == {"calm"}

    def test_brand_terms_always_included(self):
        tokens = tokenize("Sleep Sounds")
        assert detect_brand_tokens("Sleep Sounds", tokens, brand_terms=["Calm"]) == {"calm"}


class TestComboTypes:
    """Test branded / generic / low_value tagging."""

    def test_branded_and_generic(self):
        tokens = tokenize("Duolingo: Language Lessons")
        combos = extract_combos(tokens, brand_tokens={"duolingo"})
        assert combos.get("duolingo language").type == ComboType.BRANDED
        assert combos.get("language lessons").type == ComboType.GENERIC

    def test_all_tier_zero_is_low_value(self):
        relevance = TokenRelevanceClassifier(table={"best": 0, "top": 0})
        combos = extract_combos(tokenize("Best Top Games", relevance=relevance))
        assert combos.get("best top").type == ComboType.LOW_VALUE
        assert combos.get("top games").type == ComboType.GENERIC

    def test_low_value_pattern(self):
        tokens = tokenize("Games 2024 Edition", relevance=TokenRelevanceClassifier(table={}))
        combos = extract_combos(tokens, low_value_patterns=[r"\b20\d\d\b"])
        assert {c.type for c in combos.title} == {ComboType.LOW_VALUE}

    def test_relevance_is_average_content_tier(self):
        relevance = TokenRelevanceClassifier(table={"budget": 3})
        combos = extract_combos(tokenize("Budget Tracker", relevance=relevance))
        assert combos.get("budget tracker").relevance == 2.0
