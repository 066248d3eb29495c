from agent.core.prompt import (
    AUTO_MEMORY_TEMPLATE,
    CANVAS_END,
    CANVAS_START,
    DYNAMIC_PERSONA_PROMPT,
    GENERALIST_PROMPT,
    IDENTITY_PROMPT,
    compose_prompt,
)


def test_generalist_prompt_without_memories():
    text = compose_prompt("Explain recursion")
    assert text.startswith(IDENTITY_PROMPT)
    assert GENERALIST_PROMPT in text
    assert DYNAMIC_PERSONA_PROMPT not in text
    assert "remember about the user" not in text
    assert CANVAS_START in text and CANVAS_END in text
    assert text.endswith("Explain recursion")


def test_dynamic_persona_and_memory_context():
    text = compose_prompt("Plan my week", memory_context="- Works nights", use_dynamic_persona=True)
    assert DYNAMIC_PERSONA_PROMPT in text
    assert "- Works nights" in text
    assert text.index("- Works nights") < text.index(CANVAS_START)


def test_inferred_persona_replaces_generic_instruction():
    text = compose_prompt("Fix my SQL", use_dynamic_persona=True, persona="A senior DBA")
    assert "A senior DBA" in text
    assert DYNAMIC_PERSONA_PROMPT not in text


def test_prompt_with_braces_is_kept_verbatim():
    text = compose_prompt("What does {x: 1} mean in JS?")
    assert "{x: 1}" in text


def test_auto_memory_template_asks_for_json():
    text = AUTO_MEMORY_TEMPLATE.format(prompt="I love tea", answer="Noted")
    assert '{"text":' in text
    assert "User: I love tea" in text
