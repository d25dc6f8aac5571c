"""
Export directives.

A directive tells the external assistant what to do with the staged
context. Each template has two placeholders: {STAGED_BLOCKS} receives the
formatted entries and {BRIDGE_KEY} the key of the export.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from ..errors import InvalidInputError


class Directive(Enum):
    """Supported export directives."""

    DUMP = "DUMP"
    CRITIQUE = "CRITIQUE"
    GENERATE = "GENERATE"

    @classmethod
    def parse(cls, value: str) -> Directive:
        """Look up a directive by name, case-insensitively.

        Raises:
            InvalidInputError: If the name is unknown
        """
        try:
            return cls(value.strip().upper())
        except ValueError:
            names = ", ".join(d.value for d in cls)
            raise InvalidInputError(
                f"Unknown directive '{value}'. Must be one of: {names}",
                field_name="directive",
            ) from None


@dataclass(frozen=True)
class DirectiveConfig:
    directive: Directive
    label: str
    description: str
    template: str


_OUTPUT_FORMAT = """<output_format>
You MUST wrap your entire response in the following structure:

<kolam_response bridge="{{BRIDGE_KEY}}" directive="{directive}">
<ai_model>YOUR_MODEL_NAME (e.g., Claude 3.5 Sonnet, GPT-4, Gemini Pro)</ai_model>
<summary>{summary}</summary>
<content>
{content}
</content>
{trailer}
</kolam_response>

This structured format is REQUIRED for the application to process your response correctly.
</output_format>"""


def _template(task: str, directive: str, summary: str, content: str, trailer: str) -> str:
    output_format = _OUTPUT_FORMAT.format(
        directive=directive, summary=summary, content=content, trailer=trailer
    )
    return f"<directive>\n{task}\n</directive>\n\n<context>\n{{STAGED_BLOCKS}}\n</context>\n\n{output_format}"


DIRECTIVES: dict[Directive, DirectiveConfig] = {
    Directive.DUMP: DirectiveConfig(
        directive=Directive.DUMP,
        label="Dump",
        description="Refactor & Restructure",
        template=_template(
            task="""You are a thinking partner helping to refactor and restructure notes.

TASK: Analyze the provided context and improve its organization, clarity, and coherence.

Focus on:
- Logical flow and structure
- Removing redundancy
- Clarifying ambiguous points
- Suggesting better organization (headings, lists, groupings)
- Preserving all original information (do not omit important details)""",
            directive="DUMP",
            summary="One-sentence summary of what you did",
            content="[Your refactored content here in Markdown format]",
            trailer="""<changes>
- [Brief explanation of major change 1]
- [Brief explanation of major change 2]
</changes>""",
        ),
    ),
    Directive.CRITIQUE: DirectiveConfig(
        directive=Directive.CRITIQUE,
        label="Critique",
        description="Find Gaps & Issues",
        template=_template(
            task="""You are a critical thinking partner analyzing these notes.

TASK: Identify logical gaps, inconsistencies, missing information, and potential improvements.

Structure your critique:
1. **Strengths:** What works well (be brief)
2. **Gaps:** Missing information or unexplored angles
3. **Inconsistencies:** Conflicting statements or logic errors
4. **Questions:** Key questions that need answers
5. **Recommendations:** Specific next steps

Be constructive and specific. Cite which parts you're referencing.""",
            directive="CRITIQUE",
            summary="One-sentence summary of your critique",
            content="[Your critique content here in Markdown format, following the structure above]",
            trailer="""<references>
- entry_id: [ID of entry referenced] | point: [What you referenced]
</references>""",
        ),
    ),
    Directive.GENERATE: DirectiveConfig(
        directive=Directive.GENERATE,
        label="Generate",
        description="Expand & Elaborate",
        template=_template(
            task="""You are a creative thinking partner helping to expand these notes.

TASK: Generate new content that builds upon, complements, or extends the provided context.

Guidelines:
- Maintain consistency with existing ideas
- Add concrete examples, details, or elaborations
- Explore implications or applications
- Suggest related concepts or connections
- Clearly mark speculative ideas vs. extensions of stated facts""",
            directive="GENERATE",
            summary="One-sentence summary of what you generated",
            content="[Your generated content here in Markdown format]",
            trailer="""<sources>
- entry_id: [ID of entry this builds upon] | aspect: [What aspect you expanded]
</sources>""",
        ),
    ),
}


def get_directive(directive: Directive | str) -> DirectiveConfig:
    """Configuration for a directive given as enum or name."""
    if isinstance(directive, str):
        directive = Directive.parse(directive)
    return DIRECTIVES[directive]
