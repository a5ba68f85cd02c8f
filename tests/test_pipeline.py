"""
Tests du pipeline d'amélioration LLM (client LLM simulé).
"""

from unittest.mock import MagicMock

import pytest

from doc_translator.enhancement import EnhancementPipeline, EnhancementRequest
from doc_translator.errors import PipelineStageError, ProviderTimeoutError
from doc_translator.llm import LLM
from doc_translator.models import (
    GlossaryTerm,
    PipelineConfig,
    StageConfig,
)


def make_llm(responses: dict):
    """Client LLM dont la réponse dépend de l'étape (suffixe du contexte)."""
    llm = MagicMock(spec=LLM)
    llm.render_prompt.side_effect = lambda name, **kwargs: f"prompt:{name}"

    def query(prompt, content, context=None, model=None, options=None):
        stage = context.rsplit("_", 1)[-1]
        response = responses[stage]
        if isinstance(response, Exception):
            raise response
        return response

    llm.query.side_effect = query
    return llm


def make_request(**overrides):
    values = dict(
        source_text="The Spirit is good.",
        translated_text="L'Esprit est bon.",
        source_language="en",
        target_language="fr",
        context="job_ab12_chunk_000",
    )
    values.update(overrides)
    return EnhancementRequest(**values)


class TestPipelineStages:
    def test_validation_ok_skips_rewrite(self):
        llm = make_llm({"validation": "OK"})
        pipeline = EnhancementPipeline(PipelineConfig(enabled=True), llm=llm)

        outcome = pipeline.run(make_request())

        assert [(s.stage, s.status) for s in outcome.stages] == [("validation", "ok")]
        assert outcome.text == "L'Esprit est bon."
        assert outcome.processing_layer == "validation"
        assert outcome.model == "llama3.1:8b"
        assert llm.query.call_count == 1

    def test_issues_trigger_rewrite_with_instructions(self):
        llm = make_llm({"validation": "[GENDER] 'bon' devrait être 'bonne'", "rewrite": "L'Esprit est bonne."})
        pipeline = EnhancementPipeline(PipelineConfig(enabled=True), llm=llm)

        outcome = pipeline.run(make_request())

        assert [(s.stage, s.status) for s in outcome.stages] == [
            ("validation", "issues"),
            ("rewrite", "rewritten"),
        ]
        assert outcome.text == "L'Esprit est bonne."
        assert outcome.processing_layer == "rewrite"
        rewrite_call = llm.render_prompt.call_args_list[1]
        assert "[GENDER]" in rewrite_call.kwargs["instructions"]

    def test_rewrite_without_validation(self):
        llm = make_llm({"rewrite": "Réécrit."})
        config = PipelineConfig(enabled=True, validation=StageConfig(enabled=False))

        outcome = EnhancementPipeline(config, llm=llm).run(make_request())

        assert [s.stage for s in outcome.stages] == ["rewrite"]
        assert "grammar" in llm.render_prompt.call_args.kwargs["instructions"]

    def test_per_stage_model_and_options(self):
        llm = make_llm({"validation": "OK"})
        config = PipelineConfig(
            enabled=True,
            validation=StageConfig(enabled=True, model="qwen2.5:7b"),
        )

        EnhancementPipeline(config, llm=llm).run(make_request())

        kwargs = llm.query.call_args.kwargs
        assert kwargs["model"] == "qwen2.5:7b"
        assert kwargs["context"] == "job_ab12_chunk_000_validation"
        assert kwargs["options"] == {"temperature": 0.3, "top_p": 0.9}

    def test_glossary_enforced_after_rewrite(self):
        llm = make_llm({"rewrite": "Le Spirit est bon.", "technical-check": "Le Spirit est bon."})
        config = PipelineConfig(
            enabled=True,
            validation=StageConfig(enabled=False),
            technical_check=StageConfig(enabled=True),
        )
        request = make_request(glossary=(GlossaryTerm("Spirit", "Esprit"),))

        outcome = EnhancementPipeline(config, llm=llm).run(request)

        assert outcome.text == "Le Esprit est bon."
        assert [s.stage for s in outcome.stages] == ["rewrite", "technical-check"]


class TestPipelineFailures:
    def test_stage_failure_raises_with_stage_name(self):
        llm = make_llm({"validation": "[GENDER] accord", "rewrite": ProviderTimeoutError("timeout")})
        recorded = []
        pipeline = EnhancementPipeline(PipelineConfig(enabled=True), llm=llm)

        with pytest.raises(PipelineStageError) as exc_info:
            pipeline.run(make_request(), on_stage=lambda result, text, model: recorded.append(result))

        assert exc_info.value.stage == "rewrite"
        assert "rewrite" in exc_info.value.describe()
        assert [(r.stage, r.status) for r in recorded] == [
            ("validation", "issues"),
            ("rewrite", "failed"),
        ]


class TestSmartGating:
    def test_high_score_runs_no_stage(self):
        llm = make_llm({})
        config = PipelineConfig(enabled=True, smart_gating=True)
        request = make_request(
            source_text="The quick brown fox jumps over the lazy dog near the river.",
            translated_text="Le renard brun rapide saute par-dessus le chien paresseux près de la rivière.",
        )

        outcome = EnhancementPipeline(config, llm=llm).run(request)

        assert outcome.quality_score == 100
        assert outcome.stages == []
        llm.query.assert_not_called()

    def test_medium_score_runs_validation_only(self):
        llm = make_llm({"validation": "[GENDER] accord"})
        config = PipelineConfig(enabled=True, smart_gating=True)
        request = make_request(
            source_text="The quick brown fox jumps over the lazy dog near the river.",
            translated_text="Le.",
        )

        outcome = EnhancementPipeline(config, llm=llm).run(request)

        assert [s.stage for s in outcome.stages] == ["validation"]
