"""
Tests for the tool call parser: the <tool_call> JSON format with its repair
strategies, the tag-style format, and result formatting.
"""

from devify.core.tool_parser import ToolCall, format_tool_results, parse_tool_calls
from devify.core.tool_executors import ToolResult


def _single(response):
    parsed = parse_tool_calls(response)
    assert len(parsed.tool_calls) == 1
    return parsed.tool_calls[0]


class TestJsonFormat:
    """Well-formed and repairable <tool_call> blocks."""

    def test_well_formed_write(self):
        call = _single(
            '<tool_call>{"name": "write_file", "arguments": '
            '{"path": "a.txt", "content": "hi"}}</tool_call>'
        )

        assert call == ToolCall(name="write_file", arguments={"path": "a.txt", "content": "hi"})

    def test_markup_in_content(self):
        call = _single(
            '<tool_call>{"name":"write_file","arguments":'
            '{"path":"index.html","content":"<h1>Hi</h1>"}}</tool_call>'
        )

        assert call.arguments == {"path": "index.html", "content": "<h1>Hi</h1>"}

    def test_surrounding_text(self):
        parsed = parse_tool_calls(
            'Let me check.\n<tool_call>{"name": "read_file", "arguments": {"path": "a.txt"}}</tool_call>\nDone'
        )

        assert parsed.has_tool_calls
        assert parsed.text_before == "Let me check."
        assert parsed.text_after == "Done"

    def test_multiple_calls_keep_order(self):
        parsed = parse_tool_calls(
            '<tool_call>{"name": "read_file", "arguments": {"path": "a.txt"}}</tool_call>\n'
            '<tool_call>{"name": "read_file", "arguments": {"path": "b.txt"}}</tool_call>'
        )

        assert [c.arguments["path"] for c in parsed.tool_calls] == ["a.txt", "b.txt"]

    def test_triple_quoted_content_matches_escaped_form(self):
        broken = _single(
            '<tool_call>{"name": "write_file", "arguments": {"path": "a.py", '
            '"content": """\nprint("hi")\n"""}}</tool_call>'
        )
        proper = _single(
            '<tool_call>{"name": "write_file", "arguments": {"path": "a.py", '
            '"content": "print(\\"hi\\")\\n"}}</tool_call>'
        )

        assert broken.arguments["content"] == 'print("hi")\n'
        assert broken == proper

    def test_single_quotes_and_trailing_commas(self):
        call = _single("<tool_call>{'name': 'read_file', 'arguments': {'path': 'a.txt',},}</tool_call>")

        assert call.name == "read_file"
        assert call.arguments == {"path": "a.txt"}

    def test_raw_newlines_inside_strings(self):
        call = _single(
            '<tool_call>{"name": "write_file", "arguments": {"path": "a.txt", "content": "line1\nline2"}}</tool_call>'
        )

        assert call.arguments["content"] == "line1\nline2"

    def test_flat_arguments(self):
        call = _single('<tool_call>{"name": "read_file", "path": "a.txt"}</tool_call>')

        assert call.arguments == {"path": "a.txt"}

    def test_alias_name_is_canonicalized(self):
        call = _single('<tool_call>{"name": "cat", "arguments": {"path": "a.txt"}}</tool_call>')

        assert call.name == "read_file"

    def test_unterminated_block_uses_manual_extraction(self):
        call = _single(
            r'<tool_call>{"name": "write_file", "arguments": {"path": "app.js", '
            r'"content": "console.log(\"x\")</tool_call>'
        )

        assert call.name == "write_file"
        assert call.arguments["path"] == "app.js"
        assert call.arguments["content"] == 'console.log("x")'

    def test_nested_wrapper(self):
        call = _single('<tool_call>{"read_file": {"path": "a.txt"}}</tool_call>')

        assert call == ToolCall(name="read_file", arguments={"path": "a.txt"})

    def test_line_format(self):
        call = _single("<tool_call>\nread_file\npath: a.txt\n</tool_call>")

        assert call == ToolCall(name="read_file", arguments={"path": "a.txt"})

    def test_line_format_with_name_prefix(self):
        call = _single("<tool_call>\nname: run_command\ncommand: npm test\n</tool_call>")

        assert call.name == "run_command"
        assert call.arguments["command"] == "npm test"

    def test_unparseable_block_is_narration(self):
        response = "Sure.\n<tool_call>this is not a tool call</tool_call>"
        parsed = parse_tool_calls(response)

        assert not parsed.has_tool_calls
        assert parsed.text_before == response

    def test_unknown_tool_is_dropped(self):
        parsed = parse_tool_calls('<tool_call>{"name": "fly_to_moon", "arguments": {}}</tool_call>')

        assert parsed.tool_calls == []

    def test_plain_text(self):
        parsed = parse_tool_calls("Just an answer.")

        assert not parsed.has_tool_calls
        assert parsed.text_before == "Just an answer."


class TestTagFormat:
    """Tag-style blocks, used only when no <tool_call> is present."""

    def test_child_tags(self):
        call = _single("<read_file><path>a.txt</path></read_file>")

        assert call == ToolCall(name="read_file", arguments={"path": "a.txt"})

    def test_paths_list_is_split(self):
        call = _single("<read_multiple_files><paths>a.txt, b.txt\nc.txt</paths></read_multiple_files>")

        assert call.arguments["paths"] == ["a.txt", "b.txt", "c.txt"]

    def test_alias_with_bare_text(self):
        call = _single("<view_file>a.txt</view_file>")

        assert call == ToolCall(name="read_file", arguments={"path": "a.txt"})

    def test_html_elements_are_not_tools(self):
        response = (
            "A search form looks like this:\n"
            '<search>\n  <form action="/q"><input name="q"></form>\n</search>\n'
            "and a legacy list uses <dir><li>one</li></dir>."
        )
        parsed = parse_tool_calls(response)

        assert not parsed.has_tool_calls
        assert parsed.text_before == response

    def test_blocks_inside_code_fences_are_ignored(self):
        response = (
            "Here is the markup:\n```html\n<search>\n  <form action=\"/q\"><input name=\"q\"></form>\n"
            "</search>\n```\nAnd the format itself:\n```\n<read_file><path>a.txt</path></read_file>\n```"
        )
        parsed = parse_tool_calls(response)

        assert not parsed.has_tool_calls
        assert parsed.text_before == response

    def test_block_after_a_fence_still_parses(self):
        parsed = parse_tool_calls("```\n<read_file>x</read_file>\n```\n<read_file><path>a.txt</path></read_file>")

        assert parsed.tool_calls == [ToolCall(name="read_file", arguments={"path": "a.txt"})]

    def test_content_keeps_markup_and_drops_wrapping_newlines(self):
        call = _single(
            "<write_file>\n<path>index.html</path>\n<content>\n<h1>Hi</h1>\n</content>\n</write_file>"
        )

        assert call.arguments == {"path": "index.html", "content": "<h1>Hi</h1>"}

    def test_tool_call_blocks_win_over_tags(self):
        parsed = parse_tool_calls(
            '<tool_call>{"name": "read_file", "arguments": {"path": "a.txt"}}</tool_call>\n'
            "<list_directory><path>.</path></list_directory>"
        )

        assert [c.name for c in parsed.tool_calls] == ["read_file"]


class TestFormatToolResults:
    def test_single_result(self):
        text = format_tool_results([ToolResult(tool="read_file", success=True, message="ok")])

        assert text == "<tool_result>\nok\n</tool_result>"

    def test_multiple_results_are_prefixed(self):
        text = format_tool_results([
            ToolResult(tool="read_file", success=True, message="a"),
            ToolResult(tool="write_file", success=False, message="b"),
        ])

        assert text == (
            "<tool_result>\n[read_file] a\n</tool_result>\n\n"
            "<tool_result>\n[write_file] b\n</tool_result>"
        )
