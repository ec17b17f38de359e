"""MCP server entrypoint for segment planning and generation."""
import os
from typing import Any, Dict, Optional

from mcp.server.fastmcp import FastMCP

from .server import SegmentService


mcp = FastMCP(
    "mcp-segments",
    json_response=True,
    host=os.getenv("MCP_HOST", "127.0.0.1"),
    port=int(os.getenv("MCP_PORT", "8000")),
    streamable_http_path=os.getenv("MCP_PATH", "/mcp"),
)
service = SegmentService()


@mcp.tool()
def segment_group_create(
    episode: Dict[str, Any],
    target_duration: float = 10.0,
    min_duration: Optional[float] = None,
    max_duration: Optional[float] = None,
    prefer_scene_boundaries: bool = True,
) -> Dict[str, Any]:
    return service.create_segment_group(
        episode=episode,
        target_duration=target_duration,
        min_duration=min_duration,
        max_duration=max_duration,
        prefer_scene_boundaries=prefer_scene_boundaries,
    )


@mcp.tool()
def segment_group_list(episode_id: Optional[str] = None) -> Dict[str, Any]:
    return service.list_segment_groups(episode_id=episode_id)


@mcp.tool()
def segment_group_get(group_id: str) -> Dict[str, Any]:
    return service.get_segment_group(group_id)


@mcp.tool()
def segment_group_generate(
    group_id: str,
    platform: Optional[str] = None,
    anchor_point_interval: Optional[int] = None,
    validate_continuity: Optional[bool] = None,
    strict_mode: Optional[bool] = None,
    apply_auto_correction: Optional[bool] = None,
    force: bool = False,
) -> Dict[str, Any]:
    return service.generate_segments(
        group_id=group_id,
        platform=platform,
        anchor_point_interval=anchor_point_interval,
        validate_continuity=validate_continuity,
        strict_mode=strict_mode,
        apply_auto_correction=apply_auto_correction,
        force=force,
    )


@mcp.tool()
def segment_group_report(group_id: str) -> Dict[str, Any]:
    return service.continuity_report(group_id)


if __name__ == "__main__":
    mcp.run(transport=os.getenv("MCP_TRANSPORT", "stdio"))
