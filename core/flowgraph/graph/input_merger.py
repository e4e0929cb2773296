"""
Input Merger - Combine several upstream outputs into one node input.

Wire format (stable contract between the engine and node executors):

    <!-- INPUT_META: {"totalInputs": 2, "sourceNodeIds": [...], ...} -->

    📥 [Input 1: Customer email]
    ...first output...

    ═══════════════════════════════════

    🤖 [Input 2: Summary]
    ...second output...

- zero producers -> ""
- one producer   -> its output, byte-identical (no header, no preamble)
- two or more    -> metadata preamble + labelled blocks

Executors that care about provenance parse the preamble once through
``InputEnvelope.parse``; everyone else just sees a string.
"""

import json
import logging
import re
from collections.abc import Mapping, Sequence
from datetime import UTC, datetime

from pydantic import BaseModel, Field, ValidationError

from flowgraph.graph.model import Node

logger = logging.getLogger(__name__)

META_PREFIX = "<!-- INPUT_META: "
META_SUFFIX = " -->"
BLOCK_SEPARATOR = "\n\n═══════════════════════════════════\n\n"
HEADER_SEPARATOR = "\n"
DEFAULT_TRUNCATE_INDICATOR = "...(truncated)"

_META_PATTERN = re.compile(r"<!-- INPUT_META: (\{.*?\}) -->\n\n?", re.DOTALL)
_HEADER_PATTERN = re.compile(r"^(?P<icon>\S+) \[Input (?P<ordinal>\d+): (?P<label>.*)\]$")

NODE_ICONS: dict[str, str] = {
    "input": "📥",
    "llm": "🤖",
    "transform": "🔄",
    "output": "📤",
    "condition": "🔀",
    "loop": "🔁",
    "api": "🌐",
    "delay": "⏰",
    "wait": "⏰",
    "webhook": "🔔",
    "random": "🎲",
    "slice": "✂️",
    "datetime": "📅",
    "filesave": "💾",
    "state": "💾",
    "approval": "✅",
    "note": "📝",
    "code": "💻",
    "parallel": "⚡",
    "template": "📄",
    "math": "🔢",
    "formula": "📊",
    "multifilter": "🔍",
}
DEFAULT_ICON = "📄"


def node_icon(kind: str | None) -> str:
    """Icon shown in front of a merged block header."""
    if not kind:
        return DEFAULT_ICON
    return NODE_ICONS.get(kind, DEFAULT_ICON)


class InputSource(BaseModel):
    """Provenance of one block in a merged input."""

    index: int
    node_id: str = Field(alias="nodeId")
    label: str
    kind: str

    model_config = {"populate_by_name": True}


class InputMetadata(BaseModel):
    """The machine-parseable preamble of a merged input."""

    total_inputs: int = Field(alias="totalInputs")
    source_node_ids: list[str] = Field(default_factory=list, alias="sourceNodeIds")
    source_labels: list[str] = Field(default_factory=list, alias="sourceLabels")
    source_kinds: list[str] = Field(default_factory=list, alias="sourceKinds")
    sources: list[InputSource] = Field(default_factory=list)
    merge_type: str = Field(default="structured", alias="mergeType")
    timestamp: str = ""

    model_config = {"populate_by_name": True, "extra": "allow"}


class InputBlock(BaseModel):
    """One labelled producer output inside a merged input."""

    ordinal: int
    label: str
    icon: str = DEFAULT_ICON
    body: str


class InputEnvelope(BaseModel):
    """
    Typed view of a node input.

    Single-source inputs parse to an envelope with no metadata and one
    unlabelled block holding the raw text.
    """

    metadata: InputMetadata | None = None
    blocks: list[InputBlock] = Field(default_factory=list)
    raw: str = ""

    @property
    def is_multi_input(self) -> bool:
        return self.metadata is not None and self.metadata.total_inputs > 1

    @property
    def input_count(self) -> int:
        return self.metadata.total_inputs if self.metadata else 1

    @classmethod
    def parse(cls, text: str) -> "InputEnvelope":
        metadata = parse_input_metadata(text)
        if metadata is None:
            return cls(raw=text, blocks=[InputBlock(ordinal=1, label="", body=text)])

        body = strip_input_metadata(text)
        blocks: list[InputBlock] = []
        for chunk in body.split(BLOCK_SEPARATOR):
            header, _, content = chunk.partition(HEADER_SEPARATOR)
            match = _HEADER_PATTERN.match(header)
            if match is None:
                # Producer output containing the separator; keep it with the previous block
                if blocks:
                    blocks[-1].body += BLOCK_SEPARATOR + chunk
                    continue
                blocks.append(InputBlock(ordinal=1, label="", body=chunk))
                continue
            blocks.append(
                InputBlock(
                    ordinal=int(match.group("ordinal")),
                    label=match.group("label"),
                    icon=match.group("icon"),
                    body=content,
                )
            )
        return cls(metadata=metadata, blocks=blocks, raw=text)


def format_block(ordinal: int, label: str, kind: str | None, output: str) -> str:
    """Format one producer output with its provenance header."""
    return f"{node_icon(kind)} [Input {ordinal}: {label}]{HEADER_SEPARATOR}{output}"


def merge_inputs(
    producer_ids: Sequence[str],
    nodes: Mapping[str, Node],
    outputs: Mapping[str, str],
    max_length: int = 0,
    truncate_indicator: str = DEFAULT_TRUNCATE_INDICATOR,
) -> str:
    """
    Merge the outputs of ``producer_ids`` into a single input string.

    Producers with no (or empty) output are dropped before counting, so a
    node fed by one live producer and one empty one still gets the raw
    pass-through.

    Args:
        producer_ids: Upstream node IDs in edge-declaration order
        nodes: Node lookup for labels and kinds
        outputs: Latest output per node ID
        max_length: Cap on the merged text, indicator included (0 = no cap)
        truncate_indicator: Suffix marking a truncated input
    """
    sources: list[tuple[str, str, str, str]] = []  # (node_id, label, kind, output)
    for node_id in producer_ids:
        output = outputs.get(node_id) or ""
        if not output:
            continue
        node = nodes.get(node_id)
        label = node.display_label if node else node_id
        kind = node.kind if node else "unknown"
        sources.append((node_id, label, kind, output))

    if not sources:
        return ""
    if len(sources) == 1:
        return apply_length_limit(sources[0][3], max_length, truncate_indicator)

    blocks = [
        format_block(i + 1, label, kind, output)
        for i, (_, label, kind, output) in enumerate(sources)
    ]
    metadata = InputMetadata(
        total_inputs=len(sources),
        source_node_ids=[s[0] for s in sources],
        source_labels=[s[1] for s in sources],
        source_kinds=[s[2] for s in sources],
        sources=[
            InputSource(index=i, node_id=node_id, label=label, kind=kind)
            for i, (node_id, label, kind, _) in enumerate(sources)
        ],
        merge_type="structured",
        timestamp=datetime.now(UTC).isoformat(),
    )
    preamble = META_PREFIX + json.dumps(
        metadata.model_dump(by_alias=True), ensure_ascii=False
    ) + META_SUFFIX

    logger.debug(f"Merged {len(sources)} inputs from {metadata.source_node_ids}")
    merged = preamble + "\n\n" + BLOCK_SEPARATOR.join(blocks)
    return apply_length_limit(merged, max_length, truncate_indicator)


def apply_length_limit(
    text: str, max_length: int, indicator: str = DEFAULT_TRUNCATE_INDICATOR
) -> str:
    """Cut ``text`` to ``max_length`` characters, ending with ``indicator``."""
    if max_length <= 0 or len(text) <= max_length:
        return text
    return text[: max(0, max_length - len(indicator))] + indicator


def parse_input_metadata(text: str) -> InputMetadata | None:
    """Extract the metadata preamble from a merged input, if present."""
    match = _META_PATTERN.search(text)
    if not match:
        return None
    try:
        return InputMetadata.model_validate(json.loads(match.group(1)))
    except (json.JSONDecodeError, ValidationError):
        return None


def strip_input_metadata(text: str) -> str:
    """Return the input without its metadata preamble."""
    return _META_PATTERN.sub("", text)


def is_multi_input(text: str) -> bool:
    metadata = parse_input_metadata(text)
    return metadata is not None and metadata.total_inputs > 1


def input_count(text: str) -> int:
    metadata = parse_input_metadata(text)
    return metadata.total_inputs if metadata else 1


def build_multi_input_prompt(text: str, base_prompt: str) -> str:
    """
    Prefix a model prompt with a short guide listing the merged sources.

    Returns ``base_prompt`` unchanged for single-source inputs.
    """
    metadata = parse_input_metadata(text)
    if metadata is None or metadata.total_inputs <= 1:
        return base_prompt

    source_lines = "\n".join(
        f"  - Input {i + 1}: {label}" for i, label in enumerate(metadata.source_labels)
    )
    guide = (
        f"You were given {metadata.total_inputs} separate inputs:\n"
        f"{source_lines}\n\n"
        "Keep the inputs distinct when analysing them. If they need to be "
        "compared or combined, finish with an overall conclusion.\n\n"
    )
    return guide + base_prompt
