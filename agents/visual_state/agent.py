"""Visual state agent: read the final frame of a generated prompt as structured JSON."""
from typing import Any, Dict, List, Optional, Sequence

from agents.common import LLMClient


PROMPT = """
You are the Continuity Supervisor. Read the generated video prompt and describe
the visual state at its final frame.
Return JSON only with keys:
setting (string), time_of_day (string), lighting (string), camera (string),
tone (string), final_frame (string),
characters (object mapping character name to {{appearance, wardrobe, position}}),
key_elements (array of strings).
Use empty strings for anything the prompt does not state.

KNOWN CHARACTERS TO TRACK:
{characters}

FOCUS AREAS:
- Character positions, appearance and wardrobe at the end of the segment
- Lighting, time of day and camera framing at the final frame
- Props and set elements that must stay consistent

Generated prompt:
{text}
""".strip()


def run(input_data: Dict[str, Any], llm: LLMClient | None = None) -> Dict[str, Any]:
    llm = llm or LLMClient(agent_name="visual_state")
    characters: List[str] = list(input_data.get("character_ids") or [])
    prompt = PROMPT.format(
        characters="\n".join(f"- {c}" for c in characters) or "- (none)",
        text=input_data.get("text") or "",
    )
    output = llm.complete_json(prompt)
    if not isinstance(output.get("characters"), dict):
        output["characters"] = {}
    return output


def extract(text: str, character_ids: Sequence[str], llm: Optional[LLMClient] = None) -> Dict[str, Any]:
    return run({"text": text, "character_ids": list(character_ids)}, llm=llm)
