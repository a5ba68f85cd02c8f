"""
Tests de l'analyse des réponses de validation et du score de qualité.
"""

import pytest

from doc_translator.enhancement import (
    build_rewrite_instructions,
    is_positive_response,
    parse_validation_response,
    quality_score,
    stages_for_score,
)
from doc_translator.models import PIPELINE_STAGES, STAGE_VALIDATION


class TestPositiveResponse:
    @pytest.mark.parametrize(
        "response",
        ["OK", "ok.", "Looks good", "No issues found.", "The translation is accurate.", "Traduction correcte"],
    )
    def test_positive(self, response):
        assert is_positive_response(response)

    @pytest.mark.parametrize("response", ["", "o", "not good", "[GENDER] wrong agreement"])
    def test_not_positive(self, response):
        assert not is_positive_response(response)


class TestParseValidation:
    def test_ok_response(self):
        result = parse_validation_response("OK")

        assert result.is_ok
        assert result.issues == []

    def test_empty_response_is_not_ok(self):
        assert not parse_validation_response("   ").is_ok

    def test_category_lines(self):
        result = parse_validation_response(
            "[GENDER] 'bom' devrait être 'bons'\n- [MISTRANSLATION] sens inversé\n1. missing word in sentence"
        )

        assert not result.is_ok
        assert [(issue.type, issue.severity) for issue in result.issues] == [
            ("GENDER", "high"),
            ("MISTRANSLATION", "critical"),
            ("GENERAL", "medium"),
        ]
        assert result.issues[2].description == "missing word in sentence"

    def test_rewrite_instructions_sorted_by_severity(self):
        result = parse_validation_response("[GENDER] accord\n[WORD_ORDER] ordre\n[MISTRANSLATION] sens")

        assert build_rewrite_instructions(result) == (
            "1. [MISTRANSLATION] sens\n2. [GENDER] accord\n3. [WORD_ORDER] ordre"
        )

    def test_rewrite_instructions_empty_when_ok(self):
        assert build_rewrite_instructions(parse_validation_response("OK")) == ""


SOURCE = "The quick brown fox jumps over the lazy dog near the river."


class TestQualityScore:
    def test_good_translation(self):
        translation = "Le renard brun rapide saute par-dessus le chien paresseux près de la rivière."

        assert quality_score(SOURCE, translation) == 100

    def test_empty_inputs(self):
        assert quality_score(SOURCE, "") == 0
        assert quality_score("", "Bonjour") == 100

    def test_length_ratio(self):
        assert quality_score(SOURCE, "Le.") == 75

    def test_untranslated_sentences(self):
        source = "This is a long sentence for testing purposes. Another sentence that is long enough."

        assert quality_score(source, source) == 60

    def test_leftover_placeholder(self):
        translation = "Le renard brun rapide saute par-dessus le chien ⟪GTERM:0⟫ près de la rivière."

        assert quality_score(SOURCE, translation) == 80

    @pytest.mark.parametrize(
        "score, expected",
        [(100, ()), (85, ()), (84, (STAGE_VALIDATION,)), (70, (STAGE_VALIDATION,)), (69, PIPELINE_STAGES)],
    )
    def test_gating_thresholds(self, score, expected):
        assert stages_for_score(score) == expected
