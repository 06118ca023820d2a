"""Constants for retrieval routing, fallback selection and evidence gating.

The abstain messages are a stable, user-visible contract. Change them only
together with the API consumers and the regression fixtures.
"""

import re

# ---------------------------------------------------------------------------
# Abstain messages
# ---------------------------------------------------------------------------
MISSING_EVIDENCE_MESSAGE = "Insufficient entity-backed lore evidence was found for this request."
MISSING_CITATIONS_MESSAGE = (
    "I cannot provide a lore assertion without verifiable entity evidence and inline citations."
)
CANCELLED_MESSAGE = "The request was cancelled."
FAILED_MESSAGE = "Something went wrong while answering this request."

# ---------------------------------------------------------------------------
# Retrieval routing
# ---------------------------------------------------------------------------
LOCAL_SEARCH_WEAK_THRESHOLD = 0.25
MAX_SALIENT_TERMS = 10
MIN_SALIENT_TERM_CHARS = 3
DEFAULT_SOURCE_SCORE = 0.5
TITLE_SOURCE_LIMIT = 10
DEFAULT_LOCAL_SEARCH_QUERY = "notes"
MAX_RETRIEVAL_QUERY_CHARS = 240
MIN_SENTENCE_CHARS = 8

# Instruction-heavy prompts are cut at the first of these markers before search.
RETRIEVAL_QUERY_STOP_MARKERS = (
    "when done",
    "use available retrieval tools",
    "using object args",
    "with the shape",
    "each proposal must include",
    "include confidence",
    "do not write frontmatter",
    "use only predicate values",
    "call submit",
    "tool:",
    "tools:",
)

# Chat transcripts saved into the vault must never back a lore answer.
FALLBACK_EXCLUDED_PATH_SUBSTRINGS = (
    "archivist/archivist-conversations",
    "archivist-conversations",
    "chat-conversations",
)

_OBJECT_ARTIFACT_PREFIX = "[object "

# ---------------------------------------------------------------------------
# Read intent / non-knowledge commands
# ---------------------------------------------------------------------------
_WIKI_LINK_RE = re.compile(r"\[\[[^\]]+\]\]")
_MD_FILE_RE = re.compile(r"\b[\w./\\-]+\.md\b", re.IGNORECASE)
_PATH_TOKEN_RE = re.compile(r"[A-Za-z0-9 _-]+/[A-Za-z0-9 _./-]+")
_READ_VERB_NOUN_RE = re.compile(
    r"\b(read|open|show|display|view|inspect|cat)\b.{0,40}\b(note|file|document|doc|markdown|md)\b",
    re.IGNORECASE,
)
_BARE_OPEN_COMMAND_RE = re.compile(r"^(open|read|show|view)\s+[\w./\\-]+$", re.IGNORECASE)
_AT_COMMAND_RE = re.compile(r"@\w+")

_ACTION_VERB_RE = re.compile(
    r"^(create|write|edit|update|rename|move|delete|remove|add|set|start|stop|run|execute|format)\b",
    re.IGNORECASE,
)
_WEB_SEARCH_RE = re.compile(
    r"(@web|@websearch|\bweb search\b|\binternet search\b|\bsearch (the )?web\b|\bgoogle\b)",
    re.IGNORECASE,
)
_UTILITY_QUERY_RE = re.compile(
    r"^(what time|time|date|weather|convert time|timezone)\b", re.IGNORECASE
)

# ---------------------------------------------------------------------------
# Citations
# ---------------------------------------------------------------------------
_FOOTNOTE_MARKER_RE = re.compile(r"\[\^(\d{1,3})\](?!:)")
_FOOTNOTE_DEFINITION_RE = re.compile(r"^\s*\[\^(\d{1,3})\]:\s*\S", re.MULTILINE)
_SOURCES_HEADING_RE = re.compile(
    r"^[ \t]*(?:#{1,6}[ \t]*)?(?:\*\*|__)?[ \t]*sources[ \t]*:?[ \t]*(?:\*\*|__)?[ \t]*:?[ \t]*$",
    re.IGNORECASE | re.MULTILINE,
)
