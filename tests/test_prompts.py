"""Prompt construction for free-form, constrained, custom and ad-hoc modes."""
import json

from config.settings import PromptConfig
from providers.prompts import DEFAULT_SYSTEM_PROMPT, PromptBuilder, analysis_schema, json_contract


def _builder(**overrides):
    settings = dict(system_prompt="", use_prompt_tags=False, prompt_tags=[], custom_fields=[])
    settings.update(overrides)
    return PromptBuilder(PromptConfig(**settings))


def test_free_form_uses_default_prompt_and_vocabularies():
    prompt = _builder().analysis_prompt(["Invoice", "Tax"], ["ACME"])
    assert prompt.startswith(DEFAULT_SYSTEM_PROMPT.strip()[:40])
    assert "Existing tags: Invoice, Tax" in prompt
    assert "Existing correspondents: ACME" in prompt
    assert "EXCLUSIVELY as a JSON object" in prompt


def test_configured_system_prompt_replaces_default():
    prompt = _builder(system_prompt="Be terse.").analysis_prompt([], [])
    assert prompt.startswith("Be terse.")
    assert DEFAULT_SYSTEM_PROMPT not in prompt


def test_constrained_mode_lists_only_prompt_tags():
    builder = _builder(use_prompt_tags=True, prompt_tags=["Bills", "Health"])
    prompt = builder.analysis_prompt(["SomethingElse"], [])
    assert "Bills, Health" in prompt
    assert "SomethingElse" not in prompt


def test_custom_prompt_keeps_contract_and_custom_fields():
    builder = _builder(custom_fields=["Amount", "IBAN"])
    prompt = builder.analysis_prompt(["Invoice"], [], custom_prompt="Only extract the amount.")
    assert prompt.startswith("Only extract the amount.")
    assert "Existing tags" not in prompt
    assert '"Amount": "value"' in prompt
    assert '"IBAN": "value"' in prompt
    assert "no currency symbol" in prompt


def test_ad_hoc_prompt_is_wholesale_plus_contract():
    prompt = _builder(system_prompt="ignored").ad_hoc_prompt("Summarize the parties.")
    assert prompt.startswith("Summarize the parties.")
    assert "ignored" not in prompt
    assert "EXCLUSIVELY as a JSON object" in prompt


def test_contract_without_custom_fields_has_no_rules():
    contract = json_contract()
    assert "custom_fields" not in contract
    assert "monetary" not in contract


def test_schema_includes_custom_fields():
    schema = analysis_schema(["Amount"])
    assert schema["properties"]["custom_fields"]["properties"] == {"Amount": {"type": "string"}}
    json.dumps(schema)
    assert "custom_fields" not in analysis_schema([])["properties"]
