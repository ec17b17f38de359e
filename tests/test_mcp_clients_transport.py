from __future__ import annotations

import pytest

from agents import common as agents_common
from orchestrator import mcp_clients
from orchestrator.models import GenerationRequest, VisualState


class DummyLLM(agents_common.LLMClient):
    def __init__(self, payload: dict) -> None:
        super().__init__()
        self._payload = payload

    def complete_json(self, prompt: str) -> dict:
        self.last_prompt = prompt
        return dict(self._payload)


class DummyClient:
    def __init__(self) -> None:
        self.calls: list[tuple[str, dict]] = []

    def call(self, name: str, args: dict) -> dict:
        self.calls.append((name, args))
        return {"optimized_prompt": "Ana waves.", "hashtags": ["#pilot"]}


def test_generator_client_uses_remote_client_for_sse(monkeypatch):
    dummy = DummyClient()
    monkeypatch.setenv("MCP_GENERATOR_URL", "http://mcp-generator:7110/mcp/sse")
    monkeypatch.setenv("MCP_TRANSPORT", "sse")
    monkeypatch.setattr(mcp_clients, "_make_client", lambda url, timeout_sec=None: dummy)

    client = mcp_clients.GeneratorClient()
    request = GenerationRequest(brief="SEGMENT 1", prior_state=VisualState(lighting="dusk"))
    result = client.generate(request)

    assert client.mode == "sse"
    assert result.optimized_prompt == "Ana waves."
    assert result.tags == ["#pilot"]
    name, args = dummy.calls[0]
    assert name == "generate_segment_prompt"
    assert args["prior_state"]["lighting"] == "dusk"


def test_make_client_selects_transport(monkeypatch):
    monkeypatch.setenv("MCP_TRANSPORT", "sse")
    assert isinstance(mcp_clients._make_client("http://x/sse"), mcp_clients.MCPSSEClient)
    monkeypatch.setenv("MCP_TRANSPORT", "http")
    assert isinstance(mcp_clients._make_client("http://x/mcp"), mcp_clients.MCPHttpClient)


def test_generator_client_falls_back_to_local_service(monkeypatch):
    from mcp_servers.generator.server import GeneratorService

    monkeypatch.delenv("MCP_GENERATOR_URL", raising=False)
    llm = DummyLLM({"optimized_prompt": "Close-up of Ana."})
    client = mcp_clients.GeneratorClient(service=GeneratorService(llm=llm))
    result = client.generate(GenerationRequest(brief="SEGMENT 2 - KITCHEN: Ana smiles"))
    assert client.mode == "local"
    assert result.optimized_prompt == "Close-up of Ana."
    assert "SEGMENT 2 - KITCHEN: Ana smiles" in llm.last_prompt


def test_unwrap_result_envelope():
    assert mcp_clients._unwrap({"result": {"a": 1}}) == {"a": 1}
    assert mcp_clients._unwrap({"a": 1}) == {"a": 1}


def test_tool_output_prefers_structured_content():
    assert mcp_clients._tool_output({"structuredContent": {"result": {"a": 1}}, "content": []}) == {"a": 1}
    text = {"content": [{"type": "text", "text": '{"optimized_prompt": "x"}'}]}
    assert mcp_clients._tool_output(text) == {"optimized_prompt": "x"}


def test_tool_output_raises_on_tool_error():
    with pytest.raises(RuntimeError):
        mcp_clients._tool_output({"isError": True, "content": [{"type": "text", "text": "boom"}]})
