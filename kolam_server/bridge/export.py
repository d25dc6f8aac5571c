"""
Bridge prompt packaging and response parsing.

Outbound, staged entries are flattened from their structured documents to
markdown-like text, wrapped in per-entry tags, placed into the directive
template and followed by the bridge marker. Inbound, a pasted response is
reduced to its content, the bridge key and whatever envelope metadata the
assistant provided, then turned back into a structured document.

Documents are ProseMirror-style JSON: ``{"type": "doc", "content": [...]}``
where nodes carry ``type``, optional ``attrs``, ``content`` and ``text``.
"""

from __future__ import annotations

import html
import math
import re
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from ..store.models import Entry
from .codec import BridgeKeyCodec, default_codec
from .directives import Directive, get_directive

CODE_BLOCK_PATTERN = re.compile(r"```[\s\S]*?```")

ENVELOPE_PATTERN = re.compile(
    r"<kolam_response\b(?P<attrs>[^>]*)>(?P<body>.*?)</kolam_response\s*>",
    re.IGNORECASE | re.DOTALL,
)
ATTRIBUTE_PATTERN = re.compile(r'([\w-]+)\s*=\s*"([^"]*)"')
ENVELOPE_KEY_PATTERN = re.compile(r"^[a-zA-Z0-9]+$")

HTML_ARTIFACTS = (
    (re.compile(r"<div[^>]*>", re.IGNORECASE), ""),
    (re.compile(r"</div>", re.IGNORECASE), "\n"),
    (re.compile(r"<span[^>]*>", re.IGNORECASE), ""),
    (re.compile(r"</span>", re.IGNORECASE), ""),
    (re.compile(r"<p[^>]*>", re.IGNORECASE), ""),
    (re.compile(r"</p>", re.IGNORECASE), "\n\n"),
    (re.compile(r"<br\s*/?>", re.IGNORECASE), "\n"),
    (re.compile(r'style="[^"]*"', re.IGNORECASE), ""),
    (re.compile(r'class="[^"]*"', re.IGNORECASE), ""),
)

BOILERPLATE_PATTERNS = (
    re.compile(r"^Here's my analysis:\s*", re.IGNORECASE),
    re.compile(r"^Based on the context you provided[,.]?\s*", re.IGNORECASE),
    re.compile(r"^I apologize, but\s*", re.IGNORECASE),
    re.compile(r"^Let me analyze this[.:]?\s*", re.IGNORECASE),
)

HEADING_LINE = re.compile(r"^(#{1,6})\s+(.+)$")
RULE_LINE = re.compile(r"^(?:-{3,}|_{3,}|\*{3,})$")
LIST_LINE = re.compile(r"^[-*]\s+(.+)$")

PROVIDER_KEYWORDS = (
    ("anthropic", ("claude",)),
    ("openai", ("gpt", "openai", "o1", "o3")),
    ("google", ("gemini", "palm", "bard")),
    ("meta", ("llama", "meta")),
    ("mistral", ("mistral", "mixtral")),
    ("xai", ("grok", "xai")),
)


@dataclass(frozen=True)
class BridgeExport:
    """A packaged prompt ready to be copied to the clipboard.

    Attributes:
        bridge_key: Key embedded in the prompt marker
        prompt: Full prompt text, ending with the bridge marker
        staged_entry_ids: Exported entry ids in document order
        directive: Directive name
        timestamp: Packaging time (Unix ms)
        token_estimate: Rough token count of the prompt
    """

    bridge_key: str
    prompt: str
    staged_entry_ids: tuple[str, ...]
    directive: str
    timestamp: int
    token_estimate: int


@dataclass
class ParsedResponse:
    """What could be recovered from pasted response text.

    Attributes:
        content: Cleaned response body
        bridge_key: Key from the bridge marker (or the envelope), lower-cased
        ai_model: Model name the assistant reported
        directive: Directive named in the envelope
        summary: One-line summary from the envelope
        is_structured: Whether a <kolam_response> envelope was found
        warnings: Problems noticed while parsing
    """

    content: str
    bridge_key: str | None
    ai_model: str | None = None
    directive: str | None = None
    summary: str | None = None
    is_structured: bool = False
    warnings: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class AiModelInfo:
    provider: str
    model_name: str
    display_name: str


# ----------------------------------------------------------------------
# Outbound
# ----------------------------------------------------------------------


def document_to_text(node: dict[str, Any] | None) -> str:
    """Flatten a structured document to markdown-like text."""
    if not node:
        return ""

    text = node.get("text") or ""

    for child in node.get("content") or []:
        if not isinstance(child, dict):
            continue
        child_text = document_to_text(child)
        node_type = child.get("type")
        attrs = child.get("attrs") or {}

        if node_type == "paragraph":
            text += child_text + "\n\n"
        elif node_type == "heading":
            level = attrs.get("level") or 1
            text += "#" * level + " " + child_text + "\n\n"
        elif node_type in ("bulletList", "orderedList"):
            text += child_text + "\n"
        elif node_type == "listItem":
            text += "- " + child_text + "\n"
        elif node_type == "codeBlock":
            language = attrs.get("language") or ""
            text += "```" + language + "\n" + child_text + "\n```\n\n"
        elif node_type == "blockquote":
            text += "> " + child_text.replace("\n", "\n> ") + "\n\n"
        elif node_type == "horizontalRule":
            text += "---\n\n"
        else:
            text += child_text

    return text


def iso_timestamp(ms: int) -> str:
    """Unix ms as an ISO-8601 UTC string with millisecond precision."""
    moment = datetime.fromtimestamp(ms / 1000, tz=timezone.utc)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def format_entry_for_export(entry: Entry) -> str:
    """Wrap one entry's text in its role tag."""
    content = document_to_text(entry.content).strip()
    return (
        f'<{entry.role}_entry id="{entry.id}" sequence="{entry.sequence_id}" '
        f'timestamp="{iso_timestamp(entry.created_at)}">\n'
        f"{content}\n"
        f"</{entry.role}_entry>"
    )


def estimate_tokens(text: str) -> int:
    """Approximate token count: prose at 4 chars/token, code at 3."""
    code_blocks = CODE_BLOCK_PATTERN.findall(text)
    prose = CODE_BLOCK_PATTERN.sub("", text)
    return math.ceil(len(prose) / 4) + math.ceil(len("".join(code_blocks)) / 3)


def build_bridge_export(
    entries: list[Entry],
    directive: Directive | str,
    bridge_key: str,
    timestamp: int | None = None,
    codec: BridgeKeyCodec = default_codec,
) -> BridgeExport:
    """Package staged entries into a prompt for ``directive``.

    Args:
        entries: Entries in document order
        directive: Directive enum or name
        bridge_key: Key to embed
        timestamp: Packaging time (Unix ms), defaults to now
        codec: Codec rendering the marker

    Returns:
        BridgeExport with the complete prompt
    """
    if timestamp is None:
        timestamp = int(time.time() * 1000)

    config = get_directive(directive)
    formatted = "\n\n".join(format_entry_for_export(entry) for entry in entries)

    prompt = (
        config.template.replace("{BRIDGE_KEY}", bridge_key).replace("{STAGED_BLOCKS}", formatted)
        + "\n\n"
        + codec.marker(bridge_key)
    )

    return BridgeExport(
        bridge_key=bridge_key,
        prompt=prompt,
        staged_entry_ids=tuple(entry.id for entry in entries),
        directive=config.directive.value,
        timestamp=timestamp,
        token_estimate=estimate_tokens(prompt),
    )


# ----------------------------------------------------------------------
# Inbound
# ----------------------------------------------------------------------


def _tag_text(body: str, name: str) -> str | None:
    match = re.search(rf"<{name}>(.*?)</{name}\s*>", body, re.IGNORECASE | re.DOTALL)
    if match is None:
        return None
    value = match.group(1).strip()
    return value or None


def _clean_content(content: str) -> str:
    for pattern, replacement in HTML_ARTIFACTS:
        content = pattern.sub(replacement, content)

    content = content.strip()
    for pattern in BOILERPLATE_PATTERNS:
        content = pattern.sub("", content)

    content = re.sub(r"\n{3,}", "\n\n", content)
    return content.strip()


def parse_ai_response(raw_text: str, codec: BridgeKeyCodec = default_codec) -> ParsedResponse:
    """Recover content, bridge key and envelope metadata from pasted text.

    The bridge key comes from the bridge marker. When the marker is missing
    but the <kolam_response> envelope carries a ``bridge`` attribute, that
    attribute is used instead and a warning is recorded.
    """
    bridge_key = codec.extract(raw_text)
    text = codec.strip(raw_text)
    warnings: list[str] = []

    if "&lt;kolam_response" in text.lower():
        text = html.unescape(text)

    envelope = ENVELOPE_PATTERN.search(text)
    if envelope is None:
        warnings.append("Response is not wrapped in <kolam_response>")
        if bridge_key is None:
            warnings.append("Bridge marker not found")
        return ParsedResponse(
            content=_clean_content(text),
            bridge_key=bridge_key,
            is_structured=False,
            warnings=warnings,
        )

    attrs = {name.lower(): value for name, value in ATTRIBUTE_PATTERN.findall(envelope.group("attrs"))}
    body = envelope.group("body")

    envelope_key = attrs.get("bridge", "").strip()
    if bridge_key is None:
        if envelope_key and ENVELOPE_KEY_PATTERN.match(envelope_key):
            bridge_key = envelope_key.lower()
            warnings.append("Bridge marker not found; using envelope bridge attribute")
        else:
            warnings.append("Bridge marker not found")
    elif envelope_key and envelope_key.lower() != bridge_key:
        warnings.append(
            f"Envelope bridge attribute '{envelope_key}' differs from marker '{bridge_key}'"
        )

    content = _tag_text(body, "content")
    if content is None:
        warnings.append("Missing <content> section")
        content = ""

    ai_model = _tag_text(body, "ai_model")
    if ai_model is None:
        warnings.append("Missing <ai_model> section")

    return ParsedResponse(
        content=_clean_content(content),
        bridge_key=bridge_key,
        ai_model=ai_model,
        directive=attrs.get("directive") or None,
        summary=_tag_text(body, "summary"),
        is_structured=True,
        warnings=warnings,
    )


def _paragraph(text: str) -> dict[str, Any]:
    return {"type": "paragraph", "content": [{"type": "text", "text": text}]}


def text_to_document(text: str) -> dict[str, Any]:
    """Turn markdown-like response text into a structured document.

    Recognises headings, horizontal rules, bullet items and fenced code
    blocks; everything else becomes paragraphs split on blank lines.
    """
    nodes: list[dict[str, Any]] = []
    paragraph: list[str] = []
    code_lines: list[str] | None = None
    code_language = ""

    def flush_paragraph() -> None:
        joined = "\n".join(paragraph).strip()
        if joined:
            nodes.append(_paragraph(joined))
        paragraph.clear()

    for line in text.split("\n"):
        if code_lines is not None:
            if line.strip().startswith("```"):
                code_node: dict[str, Any] = {"type": "codeBlock", "attrs": {"language": code_language or None}}
                if code_lines:
                    code_node["content"] = [{"type": "text", "text": "\n".join(code_lines)}]
                nodes.append(code_node)
                code_lines = None
            else:
                code_lines.append(line)
            continue

        if line.strip().startswith("```"):
            flush_paragraph()
            code_lines = []
            code_language = line.strip()[3:].strip()
            continue

        heading = HEADING_LINE.match(line)
        if heading:
            flush_paragraph()
            nodes.append(
                {
                    "type": "heading",
                    "attrs": {"level": len(heading.group(1))},
                    "content": [{"type": "text", "text": heading.group(2)}],
                }
            )
            continue

        if RULE_LINE.match(line.strip()):
            flush_paragraph()
            nodes.append({"type": "horizontalRule"})
            continue

        item = LIST_LINE.match(line)
        if item:
            flush_paragraph()
            nodes.append(
                {
                    "type": "bulletList",
                    "content": [{"type": "listItem", "content": [_paragraph(item.group(1))]}],
                }
            )
            continue

        if line.strip() == "":
            flush_paragraph()
            continue

        paragraph.append(line)

    if code_lines is not None:
        paragraph.extend(["```" + code_language, *code_lines])
    flush_paragraph()

    if not nodes:
        nodes.append({"type": "paragraph", "content": []})

    return {"type": "doc", "content": nodes}


def parse_model_string(model: str) -> AiModelInfo:
    """Classify a reported model name by provider."""
    lower = model.lower()
    model_name = re.sub(r"\s+", "-", lower)
    for provider, keywords in PROVIDER_KEYWORDS:
        if any(keyword in lower for keyword in keywords):
            return AiModelInfo(provider=provider, model_name=model_name, display_name=model)
    return AiModelInfo(provider="other", model_name=model_name, display_name=model)
