import pytest

from supplyjudge.errors import NonRetryableCallError, TransientCallError
from supplyjudge.response_parsing import (
    DEFAULT_ANALYSIS,
    FALLBACK_ANALYSIS,
    TRUNCATED_ANALYSIS,
    extract_text,
    from_bare_text,
    from_candidates,
    from_chat_choices,
    from_common_fields,
    from_loose_decode,
    from_recursive_search,
    parse_analysis_text,
)
from supplyjudge.schemas import Severity


def gemini_payload(text, finish_reason="STOP"):
    return {"candidates": [{"content": {"parts": [{"text": text}]}, "finishReason": finish_reason}]}


class TestStrategies:
    def test_candidates_envelope(self):
        assert from_candidates(gemini_payload("ANALYSIS: ok")) == "ANALYSIS: ok"
        assert from_candidates({"candidates": []}) is None
        assert from_candidates({"candidates": [{"content": "flat"}]}) is None
        assert from_candidates("text") is None

    def test_chat_choices_envelope(self):
        payload = {"choices": [{"message": {"role": "assistant", "content": "ANALYSIS: fine"}, "finish_reason": "stop"}]}
        assert from_chat_choices(payload) == "ANALYSIS: fine"
        assert from_chat_choices({"choices": [{"message": {"content": None}}]}) is None

    def test_bare_text_needs_some_length(self):
        assert from_bare_text("ANALYSIS: nothing to report here") == "ANALYSIS: nothing to report here"
        assert from_bare_text("short") is None
        assert from_bare_text({"text": "ANALYSIS: nothing to report here"}) is None

    def test_loose_decode_reads_candidates(self):
        payload = {"candidates": [{"content": {"parts": [{"text": "hello"}]}, "finishReason": "SAFETY"}], "extra": 1}
        assert from_loose_decode(payload) == "hello"

    def test_loose_decode_surfaces_error_object(self):
        with pytest.raises(NonRetryableCallError):
            from_loose_decode({"error": {"code": 429, "message": "You exceeded your current quota"}})
        with pytest.raises(TransientCallError):
            from_loose_decode({"error": {"code": 503, "message": "The model is overloaded"}})
        with pytest.raises(NonRetryableCallError):
            from_loose_decode({"error": {"code": 400, "message": "API key not valid", "status": "INVALID_ARGUMENT"}})

    def test_recursive_search_prefers_marked_text(self):
        payload = {"meta": {"id": "abcdefghijklmnop"}, "data": [{"inner": {"body": "ANALYSIS: buried deep"}}]}
        assert from_recursive_search(payload) == "ANALYSIS: buried deep"
        assert from_recursive_search({"a": "nothing relevant at all"}) is None

    def test_common_fields(self):
        assert from_common_fields({"output": "plain words without markers"}) == "plain words without markers"
        assert from_common_fields({"output": "tiny"}) is None


class TestExtractText:
    def test_documented_envelope_wins(self):
        assert extract_text(gemini_payload("ANALYSIS: fine")) == "ANALYSIS: fine"

    def test_truncated_generation_gets_placeholder(self):
        payload = {"candidates": [{"content": {"role": "model"}, "finishReason": "MAX_TOKENS"}]}
        assert extract_text(payload) == TRUNCATED_ANALYSIS

    def test_unknown_shape_yields_synthetic_analysis(self):
        assert extract_text({"foo": 42, "bar": [1, 2]}) == FALLBACK_ANALYSIS
        assert extract_text([]) == FALLBACK_ANALYSIS
        assert extract_text(None) == FALLBACK_ANALYSIS

    def test_error_object_is_not_swallowed(self):
        with pytest.raises(NonRetryableCallError):
            extract_text({"error": {"code": 403, "message": "Permission denied"}})


class TestParseAnalysisText:
    def test_splits_analysis_and_patterns(self):
        text = (
            "ANALYSIS: The build script downloads and runs a binary.\n\n"
            "PATTERNS:\n"
            "- Line: 14, Severity: High, Description: Downloads remote payload, Code: reqwest::get(URL)\n"
            "- Line: 20, Severity: Low, Description: Reads env, Code: env::var(\"HOME\")\n"
            "- this line is commentary and is ignored\n"
            "Line: 3, Severity: Medium, Description: Unsafe block, Code: unsafe { ptr.read() }\n"
        )
        result = parse_analysis_text(text)
        assert result.analysis_text == "The build script downloads and runs a binary."
        assert [(p.line, p.severity) for p in result.flagged_patterns] == [
            (14, Severity.HIGH),
            (20, Severity.LOW),
            (3, Severity.MEDIUM),
        ]
        assert result.flagged_patterns[0].description == "Downloads remote payload"
        assert result.flagged_patterns[0].snippet == "reqwest::get(URL)"

    def test_unknown_severity_is_ignored(self):
        text = "ANALYSIS: x\nPATTERNS:\n- Line: 1, Severity: Critical, Description: bad, Code: y"
        assert parse_analysis_text(text).flagged_patterns == []

    def test_no_marker_uses_whole_text(self):
        result = parse_analysis_text("  Looks benign overall.  ")
        assert result.analysis_text == "Looks benign overall."
        assert result.flagged_patterns == []

    def test_empty_analysis_gets_default(self):
        assert parse_analysis_text("ANALYSIS:\nPATTERNS:\n").analysis_text == DEFAULT_ANALYSIS
        assert parse_analysis_text("").analysis_text == DEFAULT_ANALYSIS

    def test_numbered_findings_are_kept(self):
        text = (
            "ANALYSIS: Two concerns.\n"
            "PATTERNS:\n"
            "1. - Line: 4, Severity: High, Description: Spawns shell, Code: Command::new(\"sh\")\n"
            "2) Line: 9, Severity: Low, Description: Reads env, Code: env::var(\"KEY\")\n"
            "- SeeLine: 5, Severity: High, Description: not a finding, Code: x\n"
        )
        result = parse_analysis_text(text)
        assert [(p.line, p.severity) for p in result.flagged_patterns] == [(4, Severity.HIGH), (9, Severity.LOW)]
