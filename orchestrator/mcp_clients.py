"""MCP clients with local fallbacks for the generator service."""
from __future__ import annotations

import json
import os
import urllib.error
import urllib.request
from datetime import timedelta
from typing import Any, Dict, Iterable, Optional

import anyio
from mcp.client.session import ClientSession
from mcp.client.sse import sse_client

from mcp_servers.generator.server import GeneratorService

from .models import GenerationRequest, GenerationResult


def _env_url(name: str) -> Optional[str]:
    value = (os.getenv(name) or "").strip()
    return value or None


def _unwrap(payload: Any) -> Dict[str, Any]:
    if isinstance(payload, dict) and "result" in payload and isinstance(payload["result"], dict):
        return payload["result"]
    return payload


def _text_payload(content: Iterable[Any]) -> Optional[Dict[str, Any]]:
    for item in content or []:
        kind = item.get("type") if isinstance(item, dict) else getattr(item, "type", None)
        text = item.get("text") if isinstance(item, dict) else getattr(item, "text", None)
        if kind != "text" or not text:
            continue
        try:
            return _unwrap(json.loads(text))
        except ValueError:
            return None
    return None


def _tool_output(result: Dict[str, Any]) -> Dict[str, Any]:
    """Tool output from a tools/call result: structuredContent first, then JSON text content."""
    if result.get("isError"):
        raise RuntimeError(f"MCP tool error: {_text_payload(result.get('content')) or result.get('content')}")
    if result.get("structuredContent") is not None:
        return _unwrap(result["structuredContent"])
    if "content" in result:
        payload = _text_payload(result["content"])
        if payload is None:
            raise RuntimeError("MCP response missing structured content")
        return payload
    return result


class MCPHttpClient:
    def __init__(self, url: str, timeout_sec: Optional[float] = None) -> None:
        self.url = url
        self.timeout_sec = float(timeout_sec or os.getenv("MCP_HTTP_TIMEOUT_SEC", "60"))

    def call(self, name: str, args: Dict[str, Any]) -> Dict[str, Any]:
        body = {
            "jsonrpc": "2.0",
            "id": 1,
            "method": "tools/call",
            "params": {"name": name, "arguments": args},
        }
        req = urllib.request.Request(
            self.url,
            data=json.dumps(body).encode("utf-8"),
            headers={"Content-Type": "application/json", "Accept": "application/json, text/event-stream"},
        )
        try:
            with urllib.request.urlopen(req, timeout=self.timeout_sec) as resp:
                raw = resp.read().decode("utf-8")
        except urllib.error.HTTPError as exc:
            detail = exc.read().decode("utf-8", errors="ignore")
            raise RuntimeError(f"MCP HTTP {exc.code} {exc.reason} calling {name}: {detail}") from exc
        except urllib.error.URLError as exc:
            raise RuntimeError(f"MCP HTTP connection to {self.url} failed: {exc}") from exc
        parsed = json.loads(raw)
        if "error" in parsed:
            raise RuntimeError(parsed["error"])
        return _tool_output(parsed.get("result") or {})


class MCPSSEClient:
    def __init__(self, url: str, timeout_sec: Optional[float] = None) -> None:
        self.url = url
        self.timeout_sec = float(timeout_sec or os.getenv("MCP_HTTP_TIMEOUT_SEC", "60"))
        self.read_timeout_sec = float(os.getenv("MCP_SSE_READ_TIMEOUT_SEC", "300"))

    def call(self, name: str, args: Dict[str, Any]) -> Dict[str, Any]:
        return anyio.run(self._call_async, name, args)

    async def _call_async(self, name: str, args: Dict[str, Any]) -> Dict[str, Any]:
        async with sse_client(
            self.url,
            timeout=self.timeout_sec,
            sse_read_timeout=self.read_timeout_sec,
        ) as (read_stream, write_stream):
            async with ClientSession(
                read_stream,
                write_stream,
                read_timeout_seconds=timedelta(seconds=self.read_timeout_sec),
            ) as session:
                await session.initialize()
                result = await session.call_tool(name, arguments=args)
        return _tool_output(result.model_dump())


def _transport() -> str:
    return (os.getenv("MCP_TRANSPORT") or "http").strip().lower()


def _make_client(url: str, timeout_sec: Optional[float] = None) -> MCPHttpClient | MCPSSEClient:
    if _transport() == "sse":
        return MCPSSEClient(url, timeout_sec=timeout_sec)
    return MCPHttpClient(url, timeout_sec=timeout_sec)


class GeneratorClient:
    """Prompt generator behind MCP_GENERATOR_URL, or the in-process service."""

    def __init__(self, service: Optional[GeneratorService] = None) -> None:
        self.url = _env_url("MCP_GENERATOR_URL")
        if self.url and service is None:
            self.client = _make_client(self.url, timeout_sec=os.getenv("MCP_GENERATOR_TIMEOUT_SEC"))
            self.mode = _transport()
        else:
            self.service = service or GeneratorService()
            self.mode = "local"

    def generate(self, request: GenerationRequest) -> GenerationResult:
        args = request.to_dict()
        if self.mode != "local":
            res = self.client.call("generate_segment_prompt", args)
        else:
            res = self.service.generate_segment_prompt(**args)
        if not isinstance(res, dict) or not res.get("optimized_prompt"):
            raise RuntimeError("generate_segment_prompt missing optimized_prompt")
        return GenerationResult.from_dict(res)
