from __future__ import annotations

import json

from clipper.ai.orchestration.tools import ParameterSpec, ToolSpecification
from clipper.ai.prompts import (
    DEFAULT_PERSONA,
    DEFAULT_USER_CONTEXT,
    PERSONAS,
    build_prompt_context,
    get_persona,
    tool_instructions,
    user_context_block,
)

_DATE_SPEC = ToolSpecification(
    name="getTodayDate",
    description="Get the current date",
    parameters={"displayType": ParameterSpec("string", "view or text", enum=("view", "text"))},
)


def test_persona_lookup_by_key_and_name() -> None:
    assert get_persona("vet").key == "vet"
    assert get_persona("creative writer").key == "writer"
    assert get_persona("nobody").key == DEFAULT_PERSONA
    assert get_persona(None) is PERSONAS[DEFAULT_PERSONA]


def test_user_context_block() -> None:
    assert user_context_block({}) == ""
    assert user_context_block({"Markdown": "true"}) == "## Context\n- Markdown: true"


def test_tool_instructions_list_each_tool() -> None:
    assert tool_instructions([]) == ""
    block = tool_instructions([_DATE_SPEC])
    assert block.startswith("## Tools")
    assert '<tool_call>{"name": "<tool name>", "parameters": {...}}</tool_call>' in block
    advertised = json.loads(block.splitlines()[-1])
    assert advertised["name"] == "getTodayDate"
    assert advertised["parameters"]["properties"]["displayType"]["enum"] == ["view", "text"]


def test_build_prompt_context_orders_blocks() -> None:
    context = build_prompt_context("What's the date?", persona="vet", tools=[_DATE_SPEC])

    persona_at = context.system.index(PERSONAS["vet"].system_prompt)
    context_at = context.system.index("## Context")
    tools_at = context.system.index("## Tools")
    assert persona_at < context_at < tools_at
    for key in DEFAULT_USER_CONTEXT:
        assert f"- {key}: " in context.system
    assert context.user == "What's the date?"
    assert context.tools == (_DATE_SPEC,)
    assert context.messages()[-1] == {"role": "user", "content": "What's the date?"}


def test_empty_user_context_and_no_tools() -> None:
    context = build_prompt_context("hi", user_context={})
    assert context.system == PERSONAS[DEFAULT_PERSONA].system_prompt
    assert context.augmented_prompt == f"{context.system}\n\nhi"
