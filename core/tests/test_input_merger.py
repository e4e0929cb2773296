"""Tests for the multi-input wire format."""

import json

from flowgraph.graph.input_merger import (
    BLOCK_SEPARATOR,
    DEFAULT_TRUNCATE_INDICATOR,
    InputEnvelope,
    apply_length_limit,
    build_multi_input_prompt,
    input_count,
    is_multi_input,
    merge_inputs,
    parse_input_metadata,
    strip_input_metadata,
)
from flowgraph.graph.model import Node

NODES = {
    "email": Node(id="email", kind="input", label="Customer email"),
    "summary": Node(id="summary", kind="llm", config={"label": "Summary"}),
    "lookup": Node(id="lookup", kind="api"),
}


class TestMergeInputs:
    def test_no_producers(self):
        assert merge_inputs([], NODES, {}) == ""

    def test_single_producer_is_byte_identical(self):
        output = "  raw output\nwith lines  \n"
        assert merge_inputs(["email"], NODES, {"email": output}) == output

    def test_empty_outputs_are_dropped_before_counting(self):
        merged = merge_inputs(["email", "summary"], NODES, {"email": "hello", "summary": ""})
        assert merged == "hello"

    def test_missing_outputs_are_dropped(self):
        assert merge_inputs(["email", "lookup"], NODES, {"email": "hello"}) == "hello"

    def test_two_producers_exact_format(self):
        merged = merge_inputs(
            ["email", "summary"], NODES, {"email": "Hi there", "summary": "A greeting"}
        )

        preamble, _, body = merged.partition(" -->\n\n")
        assert preamble.startswith("<!-- INPUT_META: ")
        assert body == (
            "📥 [Input 1: Customer email]\nHi there"
            + BLOCK_SEPARATOR
            + "🤖 [Input 2: Summary]\nA greeting"
        )

    def test_metadata_fields(self):
        merged = merge_inputs(
            ["summary", "email", "lookup"],
            NODES,
            {"email": "a", "summary": "b", "lookup": "c"},
        )
        raw = json.loads(merged[len("<!-- INPUT_META: ") : merged.index(" -->")])

        assert raw["totalInputs"] == 3
        assert raw["sourceNodeIds"] == ["summary", "email", "lookup"]
        assert raw["sourceLabels"] == ["Summary", "Customer email", "lookup"]
        assert raw["sourceKinds"] == ["llm", "input", "api"]
        assert raw["mergeType"] == "structured"
        assert [s["index"] for s in raw["sources"]] == [0, 1, 2]
        assert raw["sources"][1]["nodeId"] == "email"

    def test_block_order_follows_producer_order(self):
        merged = merge_inputs(["lookup", "email"], NODES, {"email": "E", "lookup": "L"})
        body = strip_input_metadata(merged)
        assert body.startswith("🌐 [Input 1: lookup]\nL")
        assert body.endswith("📥 [Input 2: Customer email]\nE")


class TestLengthLimit:
    def test_zero_means_no_cap(self):
        assert apply_length_limit("abcdef", 0) == "abcdef"

    def test_text_that_fits_is_unchanged(self):
        assert apply_length_limit("abcdef", 6, "~") == "abcdef"

    def test_cut_includes_indicator(self):
        assert apply_length_limit("abcdefghij", 6, "..") == "abcd.."

    def test_single_producer_is_capped(self):
        merged = merge_inputs(["email"], NODES, {"email": "x" * 50}, max_length=20)

        assert len(merged) == 20
        assert merged.endswith(DEFAULT_TRUNCATE_INDICATOR)

    def test_multi_producer_is_capped(self):
        outputs = {"email": "a" * 400, "summary": "b" * 400}
        merged = merge_inputs(
            ["email", "summary"], NODES, outputs, max_length=300, truncate_indicator="[cut]"
        )

        assert len(merged) == 300
        assert merged.startswith("<!-- INPUT_META: ")
        assert merged.endswith("[cut]")


class TestInputEnvelope:
    def test_parse_multi_input(self):
        merged = merge_inputs(["email", "summary"], NODES, {"email": "one", "summary": "two"})
        envelope = InputEnvelope.parse(merged)

        assert envelope.is_multi_input
        assert envelope.input_count == 2
        assert [b.label for b in envelope.blocks] == ["Customer email", "Summary"]
        assert [b.body for b in envelope.blocks] == ["one", "two"]
        assert [b.ordinal for b in envelope.blocks] == [1, 2]

    def test_parse_single_input(self):
        envelope = InputEnvelope.parse("plain text")
        assert not envelope.is_multi_input
        assert envelope.input_count == 1
        assert envelope.blocks[0].body == "plain text"

    def test_helpers(self):
        merged = merge_inputs(["email", "summary"], NODES, {"email": "one", "summary": "two"})
        assert is_multi_input(merged)
        assert input_count(merged) == 2
        assert parse_input_metadata("nothing here") is None
        assert input_count("nothing here") == 1

    def test_multi_input_prompt_guide(self):
        merged = merge_inputs(["email", "summary"], NODES, {"email": "one", "summary": "two"})
        prompt = build_multi_input_prompt(merged, "Compare them.")
        assert "2 separate inputs" in prompt
        assert "Input 1: Customer email" in prompt
        assert prompt.endswith("Compare them.")

        assert build_multi_input_prompt("single", "Base") == "Base"
