"""
Prompt generator service: wraps the generator agent behind a plain Python API.
The MCP entrypoint exposes the same call as a tool.
"""
from typing import Any, Dict, List, Optional

from agents.common import LLMClient
from agents.generator.agent import run as generator_run


class GeneratorService:
    def __init__(self, llm: Optional[LLMClient] = None) -> None:
        self.llm = llm

    def _llm(self) -> LLMClient:
        if self.llm is None:
            self.llm = LLMClient(agent_name="generator")
        return self.llm

    def generate_segment_prompt(
        self,
        brief: str,
        platform: str = "tiktok",
        series_context: str = "",
        character_context: str = "",
        continuity_context: str = "",
        characters: Optional[List[Dict[str, Any]]] = None,
        settings: Optional[List[Dict[str, Any]]] = None,
        prior_state: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        if not (brief or "").strip():
            raise ValueError("brief is required")
        output = generator_run(
            {
                "brief": brief,
                "platform": platform,
                "series_context": series_context,
                "character_context": character_context,
                "continuity_context": continuity_context,
                "characters": characters or [],
                "settings": settings or [],
                "prior_state": prior_state,
            },
            llm=self._llm(),
        )
        optimized = output.get("optimized_prompt") or ""
        discussion = output.get("discussion") or []
        if isinstance(discussion, str):
            discussion = [{"agent": "generator", "message": discussion}]
        return {
            "optimized_prompt": optimized,
            "discussion": discussion,
            "detailed_breakdown": output.get("detailed_breakdown") or {},
            "character_count": len(optimized),
            "tags": [t for t in (output.get("hashtags") or output.get("tags") or []) if isinstance(t, str)],
        }
