"""
config/prompts.py
──────────────────────────────────────────────────────────────────────────────
All LLM prompt strings in one place.

Why centralise prompts?
  • Easy to diff and review prompt changes in version control
  • Swap or tune a prompt without touching service logic
  • Single source for prompt versioning / A-B testing

To change how a module is described to the model: edit _MODULE_PROMPTS.
To change the output schema: change CODING_OUTPUT_SCHEMA.
"""
from __future__ import annotations

from statcoder.domain.models import FewShotExample, ModuleType

# ── Coding (single item) ───────────────────────────────────────────────────────
CODING_SYSTEM_TEMPLATE = """\
You are an expert statistician specializing in {taxonomy}.
Your job is to assign the single best {taxonomy} code to a free-text record \
written by a survey respondent or a non-expert.
Respond ONLY with valid JSON (no markdown fences)."""

CODING_OUTPUT_SCHEMA = """\
Return JSON with fields:
  "code":       the {digits} code as a string,
  "label":      the official label for the code,
  "confidence": one of "High", "Medium", "Low",
  "reasoning":  one or two sentences explaining the choice."""

CODING_USER_TEMPLATE = """\
{examples}Classify: {primary_name}: "{primary_text}", {secondary_name}: "{secondary_text}".

{schema}"""

FEW_SHOT_HEADER = (
    "Use these similar past decisions from the dictionary as reference logic:\n"
)
FEW_SHOT_LINE = '- Input: "{term}" was coded as Code: {code} ("{label}")\n'
FEW_SHOT_FOOTER = "\nApply similar logic to the new item below.\n\n"

# (taxonomy name, primary field name, secondary field name, code digits)
_MODULE_PROMPTS: dict[ModuleType, tuple[str, str, str, str]] = {
    ModuleType.ISCO08: ("ISCO-08", "Job Title", "Description", "4-digit"),
    ModuleType.ISIC4:  ("ISIC Rev. 4", "Activity", "Details", "4-digit"),
    ModuleType.COICOP: ("COICOP 2018", "Item", "Context", "COICOP"),
}

# ── Manual-coding helpers ──────────────────────────────────────────────────────
SEARCH_SYSTEM_TEMPLATE = "You are an expert statistician specializing in {taxonomy}. Output valid JSON."
SEARCH_USER_TEMPLATE = """\
Search the {taxonomy} classification structure for codes related to: "{query}".
Return the top {limit} most relevant codes as JSON:
{{ "results": [{{ "code": "...", "label": "...", "description": "..." }}] }}"""

SUGGEST_SYSTEM_TEMPLATE = "You are an autocomplete API for {taxonomy}. Output valid JSON."
SUGGEST_USER_TEMPLATE = """\
The user is typing: "{query}". Suggest 3-5 relevant classification codes.
Return JSON:
{{ "suggestions": [{{ "code": "...", "label": "...", "confidence": "High/Medium" }}] }}"""


def taxonomy_name(module: ModuleType) -> str:
    """Short taxonomy name for prompts ("ISCO-08 and ISIC Rev. 4" for DUAL)."""
    if module == ModuleType.DUAL:
        return "ISCO-08 and ISIC Rev. 4"
    return _MODULE_PROMPTS[module][0]


def build_few_shot_block(examples: list[FewShotExample]) -> str:
    """Renders retrieved dictionary entries as few-shot context.

    Returns:
        Formatted block, or an empty string when there are no examples.
    """
    if not examples:
        return ""
    lines = [FEW_SHOT_HEADER]
    for ex in examples:
        lines.append(FEW_SHOT_LINE.format(term=ex.term, code=ex.code, label=ex.label))
    lines.append(FEW_SHOT_FOOTER)
    return "".join(lines)


def build_coding_prompts(
    module: ModuleType,
    primary_text: str,
    secondary_text: str,
    examples: list[FewShotExample],
) -> tuple[str, str]:
    """Assembles the (system, user) prompt pair for coding one record.

    Args:
        module:         Target taxonomy (DUAL is resolved per side upstream).
        primary_text:   Main description (job title, activity, item).
        secondary_text: Optional context.
        examples:       Few-shot dictionary examples.

    Returns:
        Tuple of (system_prompt, user_message).
    """
    taxonomy, primary_name, secondary_name, digits = _MODULE_PROMPTS[module]
    system = CODING_SYSTEM_TEMPLATE.format(taxonomy=taxonomy)
    user = CODING_USER_TEMPLATE.format(
        examples=build_few_shot_block(examples),
        primary_name=primary_name,
        primary_text=primary_text,
        secondary_name=secondary_name,
        secondary_text=secondary_text,
        schema=CODING_OUTPUT_SCHEMA.format(digits=digits),
    )
    return system, user


def build_search_prompts(query: str, module: ModuleType, limit: int = 5) -> tuple[str, str]:
    taxonomy = taxonomy_name(module)
    return (
        SEARCH_SYSTEM_TEMPLATE.format(taxonomy=taxonomy),
        SEARCH_USER_TEMPLATE.format(taxonomy=taxonomy, query=query, limit=limit),
    )


def build_suggest_prompts(query: str, module: ModuleType) -> tuple[str, str]:
    taxonomy = taxonomy_name(module)
    return (
        SUGGEST_SYSTEM_TEMPLATE.format(taxonomy=taxonomy),
        SUGGEST_USER_TEMPLATE.format(query=query),
    )
