"""
Tests for context assembly
"""
from chatrelay.core.conversation_store import ASSISTANT, USER, Turn
from chatrelay.core.prompt_assembler import build_context


def test_no_history_no_file():
    messages = build_context("Be brief.", None, [], "hello")

    assert messages == [
        {"role": "system", "content": "Be brief."},
        {"role": "user", "content": "hello"},
    ]


def test_history_is_kept_in_order_between_system_and_new_message():
    history = [Turn(USER, "q1"), Turn(ASSISTANT, "a1"), Turn(USER, "q2"), Turn(ASSISTANT, "a2")]

    messages = build_context("policy", None, history, "q3")

    assert len(messages) == 1 + len(history) + 1
    assert messages[0]["role"] == "system"
    assert [m["content"] for m in messages[1:]] == ["q1", "a1", "q2", "a2", "q3"]
    assert [m["role"] for m in messages[1:]] == ["user", "assistant", "user", "assistant", "user"]


def test_file_grounding_comes_right_after_system_entry():
    history = [Turn(USER, "q1"), Turn(ASSISTANT, "a1")]

    messages = build_context("policy", "quarterly revenue: 12", history, "what was revenue?", file_name="q.txt")

    assert len(messages) == 1 + 1 + len(history) + 1
    grounding = messages[1]
    assert grounding["role"] == "system"
    assert "<DOCUMENT (q.txt)>" in grounding["content"]
    assert "quarterly revenue: 12" in grounding["content"]
    assert messages[-1] == {"role": "user", "content": "what was revenue?"}


def test_empty_file_text_still_adds_grounding_entry():
    messages = build_context("policy", "", [], "hi")
    assert len(messages) == 3


def test_max_turns_keeps_most_recent():
    history = [Turn(USER, str(i)) for i in range(6)]

    messages = build_context("policy", None, history, "new", max_turns=2)

    assert [m["content"] for m in messages[1:]] == ["4", "5", "new"]


def test_history_is_not_mutated():
    history = [Turn(USER, "q1")]
    build_context("policy", None, history, "q2")
    assert history == [Turn(USER, "q1")]
