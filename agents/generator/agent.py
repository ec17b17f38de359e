"""Prompt generator agent: turn a segment brief into an optimized video prompt."""
from typing import Any, Dict

from agents.common import LLMClient


PROMPT = """
You are the Segment Prompt Generator for short-form {platform} video.
Write one optimized text-to-video prompt for the segment brief below.
Return JSON only with keys:
optimized_prompt (string), discussion (array of {{agent, message}}),
detailed_breakdown (object with keys subject, action, setting, camera, lighting, style),
hashtags (array of strings).

The optimized_prompt must end with a continuity footer of labelled lines:
SETTING: <where the segment ends>
TIME OF DAY: <time of day>
LIGHTING: <lighting at the final frame>
CAMERA: <camera position at the final frame>
MOOD/ATMOSPHERE: <mood>
CHARACTER POSITIONS:
- <name>: <position>
CHARACTER APPEARANCE:
- <name>: <appearance and wardrobe>
FINAL FRAME: <one sentence describing the last frame>

Series context:
{series_context}

Character reference:
{character_context}

{continuity_context}

Segment brief:
{brief}

Guidance:
- Keep characters exactly as described in the character reference.
- Respect the TRANSITION line of the brief; do not invent a scene change.
- Fit the action into the target duration.
""".strip()


def run(input_data: Dict[str, Any], llm: LLMClient | None = None) -> Dict[str, Any]:
    """Generate an optimized prompt for one segment."""
    llm = llm or LLMClient(agent_name="generator")
    prompt = PROMPT.format(
        platform=input_data.get("platform") or "tiktok",
        series_context=input_data.get("series_context") or "(none)",
        character_context=input_data.get("character_context") or "(none)",
        continuity_context=input_data.get("continuity_context") or "",
        brief=input_data.get("brief") or "",
    )
    output = llm.complete_json(prompt)
    optimized = str(output.get("optimized_prompt") or "")
    output["optimized_prompt"] = optimized
    output.setdefault("character_count", len(optimized))
    return output
