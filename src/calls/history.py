from __future__ import annotations

from collections.abc import Iterable

from calls.schemas import TranscriptEntry


def role_for_entry(entry: TranscriptEntry) -> str:
    if entry.role == "assistant":
        return "assistant"
    return "user"


def build_llm_history(
    system_prompt: str, entries: Iterable[TranscriptEntry], *, limit: int = 20
) -> list[dict[str, str]]:
    """Chat history for the secondary dialogue provider, newest ``limit`` turns."""

    history: list[dict[str, str]] = [{"role": "system", "content": system_prompt}]
    recent = list(entries)[-limit:]
    for entry in recent:
        role = role_for_entry(entry)
        # Merge consecutive caller fragments into one user turn.
        if history[-1]["role"] == role == "user":
            history[-1] = {"role": "user", "content": f"{history[-1]['content']} {entry.text}"}
            continue
        history.append({"role": role, "content": entry.text})
    return history
