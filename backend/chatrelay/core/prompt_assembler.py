"""
Prompt assembly: ordered context entries sent to the provider
"""
from typing import Dict, List, Optional, Sequence

from chatrelay.core.conversation_store import ASSISTANT, Turn

FILE_GROUNDING_INSTRUCTION = (
    "The user attached a document. Use its contents, shown below between the "
    "markers, to ground your answer. If the document does not contain the "
    "answer, say so."
)


def file_grounding_entry(file_text: str, file_name: Optional[str] = None) -> Dict[str, str]:
    label = f" ({file_name})" if file_name else ""
    return {
        "role": "system",
        "content": (
            f"{FILE_GROUNDING_INSTRUCTION}\n"
            f"<DOCUMENT{label}>\n{file_text}\n</DOCUMENT>"
        ),
    }


def build_context(
    system_policy: str,
    file_text: Optional[str],
    history: Sequence[Turn],
    new_message: str,
    file_name: Optional[str] = None,
    max_turns: Optional[int] = None,
) -> List[Dict[str, str]]:
    """
    Build the ordered message list for one completion request.

    Order is always: system policy, optional file grounding, history turns in
    their original order, then the new user message. ``max_turns`` keeps only
    the most recent history turns.
    """
    messages = [{"role": "system", "content": system_policy}]

    if file_text is not None:
        messages.append(file_grounding_entry(file_text, file_name))

    turns = list(history)
    if max_turns is not None:
        turns = turns[-max_turns:] if max_turns > 0 else []
    for turn in turns:
        role = "assistant" if turn.role == ASSISTANT else "user"
        messages.append({"role": role, "content": turn.text})

    messages.append({"role": "user", "content": new_message})
    return messages
