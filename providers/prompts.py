"""
Paperscribe — Prompt Builder
Assembles the system prompt sent with every analysis request:
base instructions, tag/correspondent vocabulary, the JSON output
contract, and the custom-field template.
"""
import json
from typing import List, Optional

from config.settings import PromptConfig

# ============================================================
# Built-in prompts
# ============================================================

DEFAULT_SYSTEM_PROMPT = """You are a document analysis assistant for a personal document archive.
Read the document and extract its key metadata:
- a short, meaningful title in the language of the document
- the correspondent: the sender or issuing organisation (not the recipient)
- up to four tags describing the document category (invoice, tax, contract, insurance, ...)
- the document type (Invoice, Letter, Contract, Receipt, ...)
- the date the document was issued
- the language of the document

Prefer existing tags and correspondents when one of them fits.
Avoid generic tags. Never ask questions back; use only what is in the document.
"""

PREDEFINED_TAGS_PROMPT = """You are a document analysis AI. You will analyze the document.
You take the main information to associate tags with the document.
You will also find the correspondent of the document (sender, not receiver) and a meaningful, short title.
You are given a list of tags: {tags}
Only use tags from this list and pick the best fitting ones. Never invent a tag outside this list.
You do not ask for additional information; you only use the information given in the document.
The tags and the title MUST be in the language that is used in the document.
"""

JSON_CONTRACT = """
Return the result EXCLUSIVELY as a JSON object, with no markdown and no text around it:
{
  "title": "xxxxx",
  "correspondent": "xxxxxxxx",
  "tags": ["Tag1", "Tag2", "Tag3", "Tag4"],
  "document_type": "Invoice/Contract/...",
  "document_date": "YYYY-MM-DD",
  "language": "en/de/es/..."%s
}
"""

CUSTOM_FIELDS_RULES = """
Custom fields: fill in a custom field only when the document contains clear evidence for it;
omit every field you cannot fill. Write monetary amounts as plain decimal numbers using "."
as decimal separator and no currency symbol or thousands separator (e.g. "1234.56").
"""


def _custom_fields_template(field_names: List[str]) -> str:
    if not field_names:
        return ""
    lines = [f'    {json.dumps(name)}: "value"' for name in field_names]
    return ',\n  "custom_fields": {\n' + ",\n".join(lines) + "\n  }"


def json_contract(custom_fields: Optional[List[str]] = None) -> str:
    """Output contract, with a fill-in-the-blank custom-field block when configured."""
    contract = JSON_CONTRACT % _custom_fields_template(custom_fields or [])
    if custom_fields:
        contract += CUSTOM_FIELDS_RULES
    return contract


def _vocabulary(label: str, names: List[str]) -> str:
    if not names:
        return ""
    return f"\n{label}: {', '.join(names)}"


class PromptBuilder:
    """Builds system prompts for free-form, constrained-tag, and ad-hoc analysis."""

    def __init__(self, settings: PromptConfig):
        self.settings = settings

    def base_prompt(self) -> str:
        if self.settings.use_prompt_tags:
            return PREDEFINED_TAGS_PROMPT.format(tags=", ".join(self.settings.prompt_tags))
        return self.settings.system_prompt.strip() or DEFAULT_SYSTEM_PROMPT

    def analysis_prompt(
        self,
        existing_tags: List[str],
        existing_correspondents: List[str],
        custom_prompt: Optional[str] = None,
    ) -> str:
        """
        System prompt for analyze(). A caller prompt replaces the base
        instructions but keeps the output contract.
        """
        if custom_prompt and custom_prompt.strip():
            prompt = custom_prompt.strip()
        else:
            prompt = self.base_prompt()
            # Constrained mode carries its own vocabulary
            if not self.settings.use_prompt_tags:
                prompt += _vocabulary("Existing tags", existing_tags)
            prompt += _vocabulary("Existing correspondents", existing_correspondents)
        return prompt + "\n" + json_contract(self.settings.custom_fields)

    def ad_hoc_prompt(self, prompt: str) -> str:
        """Caller prompt wholesale, plus the fixed JSON contract."""
        return prompt.strip() + "\n" + json_contract()


def analysis_schema(custom_fields: Optional[List[str]] = None) -> dict:
    """JSON schema for backends with schema-constrained output."""
    properties = {
        "title": {"type": "string"},
        "correspondent": {"type": "string"},
        "tags": {"type": "array", "items": {"type": "string"}},
        "document_type": {"type": "string"},
        "document_date": {"type": "string"},
        "language": {"type": "string"},
    }
    if custom_fields:
        properties["custom_fields"] = {
            "type": "object",
            "properties": {name: {"type": "string"} for name in custom_fields},
        }
    return {
        "type": "object",
        "properties": properties,
        "required": ["title", "correspondent", "tags", "document_type", "document_date", "language"],
    }
