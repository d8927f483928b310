"""Tests for the completion protocol parser."""

from librarian_rlm.core.completion import parse_final_output, resolve_final_output


class TestParseFinalOutput:
    """Test textual FINAL / FINAL_VAR markers."""

    def test_no_marker(self):
        """Test text without markers is returned unchanged."""
        text = "  still exploring  "
        output = parse_final_output(text)

        assert output.final_answer is None
        assert output.final_var is None
        assert output.cleaned_text == text

    def test_final_marker(self):
        """Test FINAL(...) content is captured and stripped."""
        output = parse_final_output("Done.\nFINAL( The answer is 42 )\n")

        assert output.final_answer == "The answer is 42"
        assert output.cleaned_text == "Done."

    def test_nested_parentheses(self):
        """Test the closing parenthesis is matched by balance."""
        output = parse_final_output("FINAL(call(a, b) and (c))")
        assert output.final_answer == "call(a, b) and (c)"

    def test_quoted_parentheses(self):
        """Test parentheses inside quotes do not close the marker."""
        output = parse_final_output('FINAL("uses ) inside")')
        assert output.final_answer == '"uses ) inside"'

    def test_multiline_answer(self):
        """Test answers may span lines."""
        output = parse_final_output("FINAL(line one\nline two)")
        assert output.final_answer == "line one\nline two"

    def test_final_var_marker(self):
        """Test FINAL_VAR(name) reports the variable name."""
        output = parse_final_output("Stored it. FINAL_VAR(summary)")

        assert output.final_answer is None
        assert output.final_var == "summary"
        assert output.cleaned_text == "Stored it."

    def test_final_preferred_over_final_var(self):
        """Test FINAL provides the answer when both appear."""
        output = parse_final_output("FINAL_VAR(notes) FINAL(direct)")

        assert output.final_answer == "direct"
        assert output.final_var == "notes"
        assert output.cleaned_text == ""

    def test_identifier_prefix_not_matched(self):
        """Test names merely ending in FINAL are not markers."""
        output = parse_final_output("MY_FINAL(x)")
        assert output.final_answer is None

    def test_unclosed_marker_ignored(self):
        """Test an unbalanced FINAL( is not treated as a marker."""
        output = parse_final_output("FINAL(never closed")
        assert output.final_answer is None
        assert output.cleaned_text == "FINAL(never closed"


class TestResolveFinalOutput:
    """Test FINAL_VAR resolution against buffers."""

    def test_resolves_buffer(self):
        """Test FINAL_VAR is resolved from the buffers."""
        output = resolve_final_output("FINAL_VAR(names)", {"names": ["a", "b"]})
        assert output.final_answer == '["a","b"]'

    def test_missing_buffer(self):
        """Test a missing buffer leaves the answer unset."""
        output = resolve_final_output("FINAL_VAR(names)", {})
        assert output.final_answer is None
        assert output.final_var == "names"
