"""Tests for src/engine/tool_args.py - tool argument validation and repair.

Covers:
- Retrieval query normalization
- Salient term extraction and merging
- Per-tool schema repair (localSearch, findNotesByTitle, readNote)
- Structured errors for unrepairable args
"""

from src.engine.tool_args import (
    coerce_salient_terms,
    extract_salient_terms,
    normalize_retrieval_query,
    normalize_salient_terms_for_query,
    validate_tool_args,
)


class TestNormalizeRetrievalQuery:
    """Tests for normalize_retrieval_query."""

    def test_collapses_whitespace(self):
        assert normalize_retrieval_query("  who   rules\n Driftmar ") == "who rules Driftmar"

    def test_cuts_at_instruction_marker(self):
        query = "Find the allies of House Corvane. When done, call submit with the shape {x}"
        assert normalize_retrieval_query(query) == "Find the allies of House Corvane."

    def test_keeps_first_long_sentence(self):
        assert normalize_retrieval_query("Hi. Who is the lord of Driftmar? Thanks.") == "Who is the lord of Driftmar?"

    def test_strips_json_punctuation_and_artifacts(self):
        assert normalize_retrieval_query('[object Object] {"q": "Driftmar"}') == "q : Driftmar"

    def test_caps_length(self):
        assert len(normalize_retrieval_query("lore " * 200)) <= 240

    def test_empty_input(self):
        assert normalize_retrieval_query("") == ""
        assert normalize_retrieval_query(None) == ""


class TestSalientTerms:
    """Tests for deterministic salient term handling."""

    def test_drops_short_tokens(self):
        assert extract_salient_terms("who is the lord of driftmar") == ["who", "the", "lord", "driftmar"]

    def test_keeps_tags(self):
        assert "#lore" in extract_salient_terms("notes tagged #lore")

    def test_dedupes_case_insensitively(self):
        assert extract_salient_terms("Driftmar driftmar DRIFTMAR") == ["Driftmar"]

    def test_caps_terms(self):
        assert len(extract_salient_terms("alpha bravo charlie delta echo", max_terms=3)) == 3

    def test_incoming_terms_win(self):
        merged = normalize_salient_terms_for_query("who is the lord of driftmar", ["lord", "driftmar"])
        assert merged == ["lord", "driftmar"]

    def test_query_terms_fill_empty_or_malformed_input(self):
        query = "who is the lord of driftmar"
        assert normalize_salient_terms_for_query(query, []) == ["who", "the", "lord", "driftmar"]
        assert normalize_salient_terms_for_query(query, ["[object Object]", ""]) == ["who", "the", "lord", "driftmar"]

    def test_merge_drops_object_artifacts(self):
        merged = normalize_salient_terms_for_query("driftmar", ["[object Object]", "", "driftmar"])
        assert merged == ["driftmar"]

    def test_coerce_string_tokenizes(self):
        assert coerce_salient_terms("broken") == ["broken"]
        assert coerce_salient_terms("lord, driftmar") == ["lord", "driftmar"]

    def test_coerce_list_keeps_strings_only(self):
        assert coerce_salient_terms(["lord", 3, None, " ", "[object Object]"]) == ["lord"]

    def test_coerce_other_values(self):
        assert coerce_salient_terms(None) == []
        assert coerce_salient_terms({"a": 1}) == []


class TestLocalSearchArgs:
    """Tests for localSearch arg repair."""

    def test_repairs_string_salient_terms(self):
        result = validate_tool_args(
            "localSearch",
            {"query": "who is the lord of driftmar", "salientTerms": "broken"},
        )

        assert result.ok
        assert isinstance(result.args["salientTerms"], list)
        assert result.args["salientTerms"] == ["broken"]
        assert result.repaired

    def test_missing_query_uses_user_message(self):
        result = validate_tool_args("localSearch", {}, fallback_query="Who is the lord of Driftmar?")

        assert result.args["query"] == "Who is the lord of Driftmar?"

    def test_blank_query_without_message_defaults(self):
        result = validate_tool_args("localSearch", {"query": "   "})

        assert result.args["query"] == "notes"

    def test_non_dict_args_are_repaired(self):
        result = validate_tool_args("localSearch", "driftmar", fallback_query="driftmar lord")

        assert result.ok
        assert result.args["query"] == "driftmar lord"

    def test_terms_are_capped(self):
        terms = [f"term{i}" for i in range(30)]
        result = validate_tool_args("localSearch", {"query": "q", "salientTerms": terms}, max_salient_terms=10)

        assert len(result.args["salientTerms"]) == 10

    def test_keeps_optional_fields(self):
        result = validate_tool_args("localSearch", {"query": "driftmar", "timeRange": {"start": 1}})

        assert result.args["timeRange"] == {"start": 1}


class TestOtherTools:
    """Tests for findNotesByTitle, readNote and unknown tools."""

    def test_title_lookup_fills_query(self):
        result = validate_tool_args("findNotesByTitle", {}, fallback_query="Driftmar")

        assert result.args == {"query": "Driftmar"}

    def test_title_lookup_without_any_query_fails(self):
        result = validate_tool_args("findNotesByTitle", {"query": ""})

        assert not result.ok
        assert result.errors

    def test_read_note_accepts_path_alias(self):
        result = validate_tool_args("readNote", {"path": "Places/Greyharbor.md"})

        assert result.args == {"notePath": "Places/Greyharbor.md"}

    def test_read_note_unwraps_wiki_link(self):
        result = validate_tool_args("readNote", {"notePath": "[[Places/Greyharbor|Greyharbor]]"})

        assert result.args["notePath"] == "Places/Greyharbor"

    def test_read_note_without_path_is_an_error(self):
        result = validate_tool_args("readNote", {})

        assert not result.ok
        assert result.errors[0]["loc"]

    def test_unknown_tool_passes_through(self):
        result = validate_tool_args("extractEntityRelations", {"anything": [1, 2]})

        assert result.ok
        assert result.args == {"anything": [1, 2]}
        assert not result.repaired
