"""Prompt templates for the assistant.

Builds the augmented prompt sent to the model: a persona block, a static
user-context block, the tool-call instructions and the user's own text.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Mapping, Sequence

from .orchestration.model_types import PromptContext
from .orchestration.tools.types import ToolSpecification

__all__ = [
    "Persona",
    "PERSONAS",
    "DEFAULT_PERSONA",
    "DEFAULT_USER_CONTEXT",
    "get_persona",
    "tool_instructions",
    "user_context_block",
    "build_prompt_context",
]


@dataclass(slots=True, frozen=True)
class Persona:
    key: str
    name: str
    system_prompt: str
    greeting: str


PERSONAS: dict[str, Persona] = {
    persona.key: persona
    for persona in (
        Persona(
            "generic",
            "Generic Assistant",
            "You are a helpful, balanced AI assistant.",
            "How can I help you today?",
        ),
        Persona(
            "tech_bro",
            "Tech Bro",
            "You're a tech-savvy assistant with startup energy. Use tech jargon naturally, "
            "be enthusiastic about innovation.",
            "Let's ship something awesome! 🚀",
        ),
        Persona(
            "vet",
            "Veterinarian",
            "You're a veterinary-focused assistant. Provide pet health guidance while "
            "recommending professional vet visits.",
            "How can I help with your furry friend?",
        ),
        Persona(
            "real_estate",
            "Real Estate Agent",
            "You're a real estate-savvy assistant. Help with property insights and market trends.",
            "Ready to talk property?",
        ),
        Persona(
            "crypto_bro",
            "Crypto Enthusiast",
            "You're a crypto-enthusiast assistant. Discuss blockchain with enthusiasm while "
            "noting volatility. Not financial advice.",
            "GM! What's on your mind? 💎",
        ),
        Persona(
            "investor",
            "Investment Advisor",
            "You're an investment-focused assistant. Provide financial perspectives. "
            "This is not financial advice.",
            "Let's discuss your financial goals",
        ),
        Persona(
            "personal_trainer",
            "Personal Trainer",
            "You're a fitness-focused assistant. Motivate and provide workout guidance. "
            "Consult doctors before new programs.",
            "Ready to crush your fitness goals?",
        ),
        Persona(
            "nutritionist",
            "Nutritionist",
            "You're a nutrition-focused assistant. Provide dietary guidance. "
            "This isn't medical advice.",
            "Let's fuel your body right!",
        ),
        Persona(
            "developer",
            "Software Developer",
            "You're a developer-focused assistant. Provide technical, code-centric responses "
            "with best practices.",
            "What are we building today?",
        ),
        Persona(
            "writer",
            "Creative Writer",
            "You're a creative writing assistant. Help with storytelling, prose, and creative "
            "expression.",
            "Ready to create something beautiful?",
        ),
    )
}

DEFAULT_PERSONA = "generic"

# Rendering hints the client understands.
DEFAULT_USER_CONTEXT: dict[str, str] = {
    "Markdown": "true",
    "markdownTheme": "gitHub",
    "imageURL": "true",
}


def get_persona(key: str | None) -> Persona:
    """Look up a persona by key or display name, falling back to the default."""
    if key:
        persona = PERSONAS.get(key)
        if persona is not None:
            return persona
        lowered = key.strip().lower()
        for persona in PERSONAS.values():
            if persona.name.lower() == lowered:
                return persona
    return PERSONAS[DEFAULT_PERSONA]


def user_context_block(context: Mapping[str, str]) -> str:
    if not context:
        return ""
    lines = [f"- {key}: {value}" for key, value in context.items()]
    return "## Context\n" + "\n".join(lines)


def tool_instructions(tools: Sequence[ToolSpecification]) -> str:
    """Describe the tool-call syntax and the available tools."""
    if not tools:
        return ""
    specs = "\n".join(json.dumps(spec.to_openai_tool()["function"], ensure_ascii=False) for spec in tools)
    return f"""## Tools

You can call the following tools. To call one, reply with a block of the form

<tool_call>{{"name": "<tool name>", "parameters": {{...}}}}</tool_call>

Use one block per call and only the tools listed here.

{specs}"""


def build_prompt_context(
    prompt: str,
    *,
    persona: str | None = None,
    user_context: Mapping[str, str] | None = None,
    tools: Sequence[ToolSpecification] = (),
) -> PromptContext:
    """Assemble the :class:`PromptContext` for one turn."""
    context = DEFAULT_USER_CONTEXT if user_context is None else user_context
    blocks = [
        get_persona(persona).system_prompt,
        user_context_block(context),
        tool_instructions(tools),
    ]
    system = "\n\n".join(block for block in blocks if block)
    return PromptContext(system=system, user=prompt, tools=tuple(tools))
