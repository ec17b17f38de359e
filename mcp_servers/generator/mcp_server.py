"""MCP server entrypoint for the prompt generator."""
import os
from typing import Any, Dict, List, Optional

from mcp.server.fastmcp import FastMCP

from .server import GeneratorService


mcp = FastMCP(
    "mcp-generator",
    json_response=True,
    host=os.getenv("MCP_HOST", "127.0.0.1"),
    port=int(os.getenv("MCP_PORT", "8000")),
    streamable_http_path=os.getenv("MCP_PATH", "/mcp"),
)
service = GeneratorService()


@mcp.tool()
def generate_segment_prompt(
    brief: str,
    platform: str = "tiktok",
    series_context: str = "",
    character_context: str = "",
    continuity_context: str = "",
    characters: Optional[List[Dict[str, Any]]] = None,
    settings: Optional[List[Dict[str, Any]]] = None,
    prior_state: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    return service.generate_segment_prompt(
        brief=brief,
        platform=platform,
        series_context=series_context,
        character_context=character_context,
        continuity_context=continuity_context,
        characters=characters,
        settings=settings,
        prior_state=prior_state,
    )


if __name__ == "__main__":
    mcp.run(transport=os.getenv("MCP_TRANSPORT", "stdio"))
