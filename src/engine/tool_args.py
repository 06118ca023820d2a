"""Tool argument validation and repair.

Weaker tool-calling models regularly omit required fields or send the wrong
shapes (a bare string for ``salientTerms``, stringified objects, empty
queries). Every tool call is passed through ``validate_tool_args`` before it
executes. The function is pure: it maps raw args to either normalized args or
a structured validation error and never raises.

Each known tool has a pydantic schema. Repairs that need the user's message
(a missing ``query``) read it from the validation context.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Type

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    ValidationInfo,
    field_validator,
    model_validator,
)

from .constants import (
    DEFAULT_LOCAL_SEARCH_QUERY,
    MAX_RETRIEVAL_QUERY_CHARS,
    MAX_SALIENT_TERMS,
    MIN_SALIENT_TERM_CHARS,
    MIN_SENTENCE_CHARS,
    RETRIEVAL_QUERY_STOP_MARKERS,
)
from .helpers import is_object_artifact
from .types import ToolName

_OBJECT_ARTIFACT_RE = re.compile(r"\[object \w+\]")
_SENTENCE_SPLIT_RE = re.compile(r"(?<=[.!?])\s+")
_TERM_SPLIT_RE = re.compile(r"[^\w#]+")


# ---------------------------------------------------------------------------
# Query / term normalization
# ---------------------------------------------------------------------------


def normalize_retrieval_query(raw_query: str) -> str:
    """Compact a user message into a search-friendly query.

    Cuts instruction boilerplate at the first stop marker, keeps the first
    sentence of reasonable length, strips JSON/bracket punctuation and caps
    the length.
    """
    text = _OBJECT_ARTIFACT_RE.sub(" ", str(raw_query or ""))
    text = re.sub(r"\s+", " ", text).strip()
    if not text:
        return ""

    lower = text.lower()
    cutoff = len(text)
    for marker in RETRIEVAL_QUERY_STOP_MARKERS:
        idx = lower.find(marker)
        if 0 < idx < cutoff:
            cutoff = idx

    primary = text[:cutoff].strip() or text

    first_sentence = primary
    for segment in _SENTENCE_SPLIT_RE.split(primary):
        segment = segment.strip()
        if len(segment) >= MIN_SENTENCE_CHARS:
            first_sentence = segment
            break

    compact = re.sub(r'[{}\[\]"`]', " ", first_sentence)
    compact = re.sub(r"\s+", " ", compact).strip()
    return compact[:MAX_RETRIEVAL_QUERY_CHARS].strip()


def extract_salient_terms(query: str, max_terms: int = MAX_SALIENT_TERMS) -> List[str]:
    """Deterministic lexical terms from a query (no LLM extraction).

    Tokens shorter than three characters are dropped unless they are tags.
    Order of first appearance is kept; duplicates are compared case-insensitively.
    """
    terms: List[str] = []
    seen: set[str] = set()
    for token in _TERM_SPLIT_RE.split(str(query or "")):
        token = token.strip()
        if not token:
            continue
        if not token.startswith("#") and len(token) < MIN_SALIENT_TERM_CHARS:
            continue
        key = token.lower()
        if key in seen:
            continue
        seen.add(key)
        terms.append(token)
        if len(terms) >= max_terms:
            break
    return terms


def normalize_salient_terms_for_query(
    query: str,
    incoming_terms: List[str],
    max_terms: int = MAX_SALIENT_TERMS,
) -> List[str]:
    """Clean planner terms, falling back to terms extracted from the query.

    Empty values and object artifacts are dropped, duplicates are removed
    case-insensitively, and the list is capped. Query terms are used only
    when no planner term survives cleaning.
    """
    out = _clean_terms(incoming_terms, max_terms)
    return out or _clean_terms(extract_salient_terms(query, max_terms), max_terms)


def _clean_terms(terms: List[str] | None, max_terms: int) -> List[str]:
    seen: set[str] = set()
    out: List[str] = []
    for term in terms or []:
        cleaned = str(term or "").strip()
        if not cleaned or is_object_artifact(cleaned):
            continue
        key = cleaned.lower()
        if key in seen:
            continue
        seen.add(key)
        out.append(cleaned)
        if len(out) >= max_terms:
            break
    return out


def coerce_salient_terms(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [t for t in _TERM_SPLIT_RE.split(value) if t.strip()]
    if isinstance(value, (list, tuple)):
        return [
            str(t).strip()
            for t in value
            if isinstance(t, str) and str(t).strip() and not is_object_artifact(t)
        ]
    return []


def _context_value(info: ValidationInfo, key: str, default: Any) -> Any:
    ctx = info.context or {}
    return ctx.get(key, default)


# ---------------------------------------------------------------------------
# Per-tool schemas
# ---------------------------------------------------------------------------


class LocalSearchArgs(BaseModel):
    """Args for the primary retrieval tool."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    query: str
    salient_terms: List[str] = Field(default_factory=list, alias="salientTerms")
    time_range: Any = Field(default=None, alias="timeRange")
    pre_expanded_query: Any = Field(default=None, alias="_preExpandedQuery")

    @model_validator(mode="before")
    @classmethod
    def fill_query(cls, data: Any, info: ValidationInfo) -> Dict[str, Any]:
        data = dict(data) if isinstance(data, dict) else {}
        raw = data.get("query")
        explicit = raw.strip() if isinstance(raw, str) else ""
        fallback = str(_context_value(info, "fallback_query", "") or "").strip()
        data["query"] = (
            normalize_retrieval_query(explicit or fallback)
            or normalize_retrieval_query(DEFAULT_LOCAL_SEARCH_QUERY)
        )
        return data

    @field_validator("salient_terms", mode="before")
    @classmethod
    def ensure_list(cls, v: Any) -> List[str]:
        return coerce_salient_terms(v)

    @model_validator(mode="after")
    def ground_terms(self, info: ValidationInfo) -> "LocalSearchArgs":
        max_terms = int(_context_value(info, "max_salient_terms", MAX_SALIENT_TERMS))
        self.salient_terms = normalize_salient_terms_for_query(self.query, self.salient_terms, max_terms)
        return self


class FindNotesByTitleArgs(BaseModel):
    """Args for the title lookup tool."""
    model_config = ConfigDict(extra="ignore")

    query: str

    @model_validator(mode="before")
    @classmethod
    def fill_query(cls, data: Any, info: ValidationInfo) -> Dict[str, Any]:
        data = dict(data) if isinstance(data, dict) else {}
        raw = data.get("query")
        explicit = raw.strip() if isinstance(raw, str) else ""
        if not explicit:
            explicit = normalize_retrieval_query(str(_context_value(info, "fallback_query", "") or ""))
        data["query"] = explicit
        return data

    @field_validator("query")
    @classmethod
    def non_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("query must not be empty")
        return v


class ReadNoteArgs(BaseModel):
    """Args for the direct read tool. A path cannot be invented, only found."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    note_path: str = Field(alias="notePath")

    @model_validator(mode="before")
    @classmethod
    def accept_aliases(cls, data: Any) -> Dict[str, Any]:
        data = dict(data) if isinstance(data, dict) else {}
        if not data.get("notePath"):
            for key in ("path", "note", "file"):
                if isinstance(data.get(key), str) and data[key].strip():
                    data["notePath"] = data[key]
                    break
        return data

    @field_validator("note_path")
    @classmethod
    def clean_path(cls, v: str) -> str:
        cleaned = v.strip()
        if cleaned.startswith("[[") and cleaned.endswith("]]"):
            cleaned = cleaned[2:-2].split("|", 1)[0].strip()
        if not cleaned:
            raise ValueError("notePath must not be empty")
        return cleaned


TOOL_ARG_SCHEMAS: Dict[str, Type[BaseModel]] = {
    ToolName.LOCAL_SEARCH.value: LocalSearchArgs,
    ToolName.FIND_NOTES_BY_TITLE.value: FindNotesByTitleArgs,
    ToolName.READ_NOTE.value: ReadNoteArgs,
}


# ---------------------------------------------------------------------------
# Validation entry point
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ArgsValidation:
    """Outcome of validating one tool call's args."""
    tool_name: str
    args: Dict[str, Any] | None
    errors: List[Dict[str, Any]] = field(default_factory=list)
    repaired: bool = False

    @property
    def ok(self) -> bool:
        return self.args is not None


def validate_tool_args(
    tool_name: str,
    raw_args: Any,
    *,
    fallback_query: str = "",
    max_salient_terms: int = MAX_SALIENT_TERMS,
    schema: Type[BaseModel] | None = None,
) -> ArgsValidation:
    """Validate and repair raw tool args against the tool's schema.

    Tools without a schema get their args passed through (a non-dict becomes
    an empty dict).
    """
    model = schema or TOOL_ARG_SCHEMAS.get(tool_name)
    raw_dict = dict(raw_args) if isinstance(raw_args, dict) else {}
    if model is None:
        return ArgsValidation(tool_name=tool_name, args=raw_dict, repaired=not isinstance(raw_args, dict))

    try:
        parsed = model.model_validate(
            raw_dict,
            context={"fallback_query": fallback_query, "max_salient_terms": max_salient_terms},
        )
    except ValidationError as exc:
        return ArgsValidation(
            tool_name=tool_name,
            args=None,
            errors=[
                {"loc": list(err.get("loc", ())), "msg": str(err.get("msg", "")), "type": err.get("type")}
                for err in exc.errors()
            ],
        )

    args = parsed.model_dump(by_alias=True, exclude_none=True)
    return ArgsValidation(tool_name=tool_name, args=args, repaired=args != raw_args)
