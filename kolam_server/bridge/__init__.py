"""
Bridge module for Kolam - the copy/paste round trip to an external assistant.

This module handles:
- Bridge key generation and marker recognition
- Directive templates
- Prompt packaging and response parsing
- The export / cancel / import flow over the stores
"""

from .codec import BridgeKeyCodec, default_codec
from .directives import DIRECTIVES, Directive, DirectiveConfig, get_directive
from .export import (
    AiModelInfo,
    BridgeExport,
    ParsedResponse,
    build_bridge_export,
    document_to_text,
    estimate_tokens,
    format_entry_for_export,
    parse_ai_response,
    parse_model_string,
    text_to_document,
)
from .service import BridgeService

__all__ = [
    "AiModelInfo",
    "BridgeExport",
    "BridgeKeyCodec",
    "BridgeService",
    "DIRECTIVES",
    "Directive",
    "DirectiveConfig",
    "ParsedResponse",
    "build_bridge_export",
    "default_codec",
    "document_to_text",
    "estimate_tokens",
    "format_entry_for_export",
    "get_directive",
    "parse_ai_response",
    "parse_model_string",
    "text_to_document",
]
