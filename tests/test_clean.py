"""Test text preparation and folding."""

import pytest
from fanpulse.nlp.clean import preprocess_text, fold_text, repair_mojibake, TRUNCATION_MARKER


class TestPreprocessText:
    """Test classifier input preparation."""

    def test_normalize_whitespace(self):
        """Test collapsing of spaces, tabs and newlines."""
        text = "Bu  maç\t\tçok\n\ngüzeldi"
        result = preprocess_text(text, 100)

        assert result == "Bu maç çok güzeldi"

    def test_strip_whitespace(self):
        """Test stripping of leading/trailing whitespace."""
        result = preprocess_text("   surrounded by spaces   ", 100)
        assert result == "surrounded by spaces"

    def test_short_text_unchanged(self):
        text = "Fener kazandı"
        assert preprocess_text(text, 100) == text

    def test_truncate_at_word_boundary(self):
        """Test that long text is cut at the last whole word."""
        result = preprocess_text("aaaa bbbb cccc", 10)
        assert result == "aaaa bbbb" + TRUNCATION_MARKER

    def test_truncate_single_long_token(self):
        """A text with no spaces is cut at the budget."""
        result = preprocess_text("a" * 20, 10)
        assert result == "a" * 10 + TRUNCATION_MARKER

    def test_no_backoff_to_early_space(self):
        """A space in the first half of the budget is not used as the cut point."""
        result = preprocess_text("ab " + "c" * 20, 10)
        assert result == "ab cccccccc" + TRUNCATION_MARKER

    def test_truncation_only_shortens(self):
        text = " ".join(["kelime"] * 500)
        result = preprocess_text(text, 1600)
        assert len(result) <= 1600 + len(TRUNCATION_MARKER)

    def test_empty_text(self):
        assert preprocess_text("", 100) == ""


class TestFoldText:
    """Test case and diacritic folding for keyword matching."""

    @pytest.mark.parametrize("raw,expected", [
        ("Beşiktaş", "besiktas"),
        ("BEŞİKTAŞ", "besiktas"),
        ("Fenerbahçe", "fenerbahce"),
        ("sarı-kırmızı", "sari-kirmizi"),
        ("Göztepe Ünlü Ağaç", "goztepe unlu agac"),
    ])
    def test_turkish_letters(self, raw, expected):
        assert fold_text(raw) == expected

    def test_strips_other_combining_marks(self):
        assert fold_text("Café") == "cafe"

    def test_mojibake_folds_like_clean_text(self):
        """Test that double-encoded text folds to the same form."""
        assert fold_text("BeÅŸiktaÅŸ") == fold_text("Beşiktaş")


class TestRepairMojibake:
    def test_repair_turkish_letters(self):
        assert repair_mojibake("FenerbahÃ§e") == "Fenerbahçe"
        assert repair_mojibake("taraftarlarÄ±") == "taraftarları"
        assert repair_mojibake("gÃ¼zel") == "güzel"

    def test_clean_text_unchanged(self):
        text = "Galatasaray şampiyon"
        assert repair_mojibake(text) == text
