"""
Stage Instruction Templates
===========================
System prompts are fixed per stage; user prompts carry the topic, the current
outline and the request options.
"""

import json

from mindmap_backend.schemas.api import PipelineOptions
from mindmap_backend.schemas.outline import Outline

SUMMARY_SEPARATOR = " — "

COVERAGE_RUBRIC = (
    "definition and core concepts",
    "history and context",
    "components and how it works",
    "types and categories",
    "real-world applications",
    "benefits and limitations",
    "common misconceptions and pitfalls",
    "tools, practices and next steps",
)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# SYSTEM PROMPTS — STRICT JSON STAGES
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

_JSON_ONLY = (
    "CRITICAL RULES:\n"
    "1. Output ONLY valid JSON — no markdown fences, no commentary.\n"
    "2. Every node MUST have a non-empty \"name\" (max 8 words).\n"
    "3. Never nest deeper than the requested depth allows.\n\n"
)

OUTLINE_SCHEMA = (
    "{\n"
    '  "title": "Topic display name",\n'
    '  "depth": 3,\n'
    '  "branches": [\n'
    "    {\n"
    '      "name": "Main branch",\n'
    '      "summary": "One short sentence.",\n'
    '      "sub": [\n'
    '        {"name": "Sub-branch", "summary": "One short sentence.", "sub": []}\n'
    "      ]\n"
    "    }\n"
    "  ]\n"
    "}\n"
)

OUTLINE_SYSTEM_PROMPT = (
    _JSON_ONLY +
    "You are a knowledge-structuring expert who designs mind maps.\n"
    "Produce a hierarchical outline for the user's topic.\n\n"
    "Output MUST be valid JSON matching this EXACT schema:\n" +
    OUTLINE_SCHEMA +
    "\nConstraints:\n"
    "- 5-8 top-level branches ordered from fundamentals to advanced.\n"
    "- 2-5 children per branch where the depth allows.\n"
    "- Summaries are brief (under 15 words).\n"
)

COVERAGE_SYSTEM_PROMPT = (
    _JSON_ONLY +
    "You are a meticulous curriculum reviewer.\n"
    "You receive a mind-map outline as JSON and a coverage rubric.\n"
    "Return the COMPLETE improved outline using the same schema:\n" +
    OUTLINE_SCHEMA +
    "\nConstraints:\n"
    "- Keep every existing branch unless it is a duplicate.\n"
    "- Add branches or children for rubric areas that are missing.\n"
    "- Improve vague names and summaries; keep names short.\n"
)

LEAVES_SYSTEM_PROMPT = (
    _JSON_ONLY +
    "You are a practical teacher who makes abstract ideas concrete.\n"
    "You receive a mind-map outline as JSON. Return the COMPLETE outline with the\n"
    "same structure and names, where only the summaries of LEAF nodes (nodes with\n"
    "an empty \"sub\") are extended with concrete examples or checklist items.\n"
    "Schema:\n" +
    OUTLINE_SCHEMA
)

RENDER_SYSTEM_PROMPT = (
    "You convert mind-map outlines into markdown for the Markmap library.\n\n"
    "STRICT FORMAT RULES:\n"
    "- Exactly one '# ' line: the title.\n"
    "- '##' for branches, '###' for their children, '####' for the next level.\n"
    "- NEVER use '#####' or deeper headings.\n"
    f"- Put a node's summary on the same line as its heading, after '{SUMMARY_SEPARATOR.strip()}'.\n"
    "- No bullet lists, no code fences, no tables.\n"
    "- Never include comments that introduce or summarize the content such as\n"
    "  \"Here is a detailed mindmap on ...\". The only content you generate is the\n"
    "  structured markdown.\n"
)

GROUNDING_DIRECTIVE = (
    "REFERENCE EXCERPTS (use only as grounding):\n"
    "- Use them to check facts and to spot missing areas.\n"
    "- Do NOT invent statistics, dates or figures that are not supported.\n"
    "- Do NOT copy passages verbatim beyond a few words.\n\n"
)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# USER PROMPTS
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

def _audience_line(options: PipelineOptions) -> str:
    return f"Audience: {options.audience}. Tone: {options.tone}.\n"


def _outline_json(outline: Outline) -> str:
    return json.dumps(outline.model_dump(), ensure_ascii=False, indent=2)


def outline_prompt(options: PipelineOptions) -> str:
    return (
        f'Create a mind-map outline for the topic "{options.topic}".\n'
        + _audience_line(options)
        + f"Maximum heading depth: {options.depth} (set \"depth\": {options.depth}; "
        f"branches may nest {options.depth - 1} level(s) including the branch itself).\n"
    )


def coverage_prompt(outline: Outline, options: PipelineOptions, context: str = "") -> str:
    rubric = "\n".join(f"- {area}" for area in COVERAGE_RUBRIC)
    prompt = (
        f'Topic: "{options.topic}"\n'
        + _audience_line(options)
        + f"Maximum heading depth: {outline.depth}.\n\n"
        f"COVERAGE RUBRIC:\n{rubric}\n\n"
    )
    if context:
        prompt += GROUNDING_DIRECTIVE + context + "\n\n"
    return prompt + f"CURRENT OUTLINE:\n{_outline_json(outline)}"


def leaves_prompt(outline: Outline, options: PipelineOptions) -> str:
    return (
        f'Topic: "{options.topic}"\n'
        + _audience_line(options)
        + f"Append exactly {options.examples_per_leaf} concrete example(s) or checklist "
        "item(s) to every leaf summary, separated by '; '. Keep each under 20 words.\n\n"
        f"OUTLINE:\n{_outline_json(outline)}"
    )


def render_prompt(outline: Outline, options: PipelineOptions) -> str:
    extras = []
    if options.include_faq:
        extras.append(
            "After the outline add a '## FAQ' section: 3-5 '### question' headings, "
            "each followed by one '#### answer' heading."
        )
    if options.include_glossary:
        extras.append(
            "After the outline add a '## Glossary' section: 5-8 '### term"
            f"{SUMMARY_SEPARATOR}definition' headings."
        )
    if not extras:
        extras.append("Do NOT add FAQ or Glossary sections.")

    return (
        _audience_line(options)
        + f"Use at most {outline.depth} heading levels.\n"
        + "\n".join(extras)
        + f"\n\nOUTLINE:\n{_outline_json(outline)}"
    )
