"""Prompt templates for answer generation.

Single Responsibility: String templates only. No logic.
"""

# ---------------------------------------------------------------------------
# Grounding rules (both engines)
# ---------------------------------------------------------------------------

COMMON_GROUNDING_RULES = """\
You are the archivist of a personal lore vault.
Answer ONLY from the CONTEXT blocks below.

GROUNDING RULES (CRITICAL):
- Never add facts about characters, places, factions or events that are not in CONTEXT.
- If CONTEXT does not answer the question, say so plainly.
- An incomplete answer is better than an unverifiable one.
"""

# ---------------------------------------------------------------------------
# Citation rules
# ---------------------------------------------------------------------------

INLINE_CITATION_RULES = """\
CITATION RULES (CRITICAL):
- Every factual sentence MUST end with an inline footnote marker [^n] that points to the CONTEXT block it came from.
- Use the block number from CONTEXT as n. Never cite a block that does not support the sentence.
- End the answer with a sources section in exactly this shape:

#### Sources:
[^1]: [[path/of/block/1.md]]
[^2]: [[path/of/block/2.md]]

- List only blocks you actually cited.
"""

NO_CITATION_RULES = """\
Mention the note titles you relied on in plain text.
"""

# ---------------------------------------------------------------------------
# Context rendering
# ---------------------------------------------------------------------------

CONTEXT_BLOCK_TEMPLATE = """\
[{idx}] {title} ({path})
{content}"""

EMPTY_CONTEXT = "(no matching notes were found)"

# ---------------------------------------------------------------------------
# Prompt assembly template
# ---------------------------------------------------------------------------

PROMPT_TEMPLATE = """\
{common}
{citation_rules}
CONTEXT:
{context}

QUESTION:
{question}
"""
