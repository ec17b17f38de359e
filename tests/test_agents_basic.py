from __future__ import annotations

from typing import Any, Dict

import pytest

from agents import common as agents_common
from agents.generator import agent as generator_agent
from agents.visual_state import agent as visual_state_agent
from mcp_servers.generator.server import GeneratorService


class DummyLLM(agents_common.LLMClient):
    def __init__(self, payload: Dict[str, Any]) -> None:
        super().__init__()
        self._payload = payload

    def complete_json(self, prompt: str) -> Dict[str, Any]:
        self.last_prompt = prompt
        return dict(self._payload)


def test_generator_agent():
    llm = DummyLLM({"optimized_prompt": "Ana pours coffee.", "hashtags": ["#pilot"]})
    res = generator_agent.run({"brief": "SEGMENT 1 - KITCHEN: Ana pours coffee", "platform": "reels"}, llm=llm)
    assert res["optimized_prompt"] == "Ana pours coffee."
    assert res["character_count"] == len("Ana pours coffee.")
    assert "SEGMENT 1 - KITCHEN: Ana pours coffee" in llm.last_prompt
    assert "short-form reels video" in llm.last_prompt


def test_visual_state_agent():
    llm = DummyLLM({"lighting": "dusk", "characters": None})
    res = visual_state_agent.extract("Ana at dusk.", ["Ana", "Ben"], llm=llm)
    assert res["lighting"] == "dusk"
    assert res["characters"] == {}
    assert "KNOWN CHARACTERS TO TRACK:\n- Ana\n- Ben" in llm.last_prompt


def test_generator_service_normalizes_output():
    llm = DummyLLM({"optimized_prompt": "Wide shot.", "discussion": "looks fine", "hashtags": ["#a", 3]})
    res = GeneratorService(llm=llm).generate_segment_prompt("SEGMENT 1 - KITCHEN: x")
    assert res["discussion"] == [{"agent": "generator", "message": "looks fine"}]
    assert res["tags"] == ["#a"]
    assert res["character_count"] == len("Wide shot.")
    with pytest.raises(ValueError):
        GeneratorService(llm=llm).generate_segment_prompt("  ")


def test_temperature_overrides(monkeypatch):
    monkeypatch.delenv("LLM_TEMPERATURE_VISUAL_STATE", raising=False)
    assert agents_common.LLMConfig(agent_name="visual_state").temperature == 0.05
    monkeypatch.setenv("LLM_TEMPERATURE_VISUAL_STATE", "0.3")
    assert agents_common.LLMConfig(agent_name="visual_state").temperature == 0.3


def test_extract_json_salvages_wrapped_payload():
    assert agents_common._extract_json('Sure! {"a": 1} done') == {"a": 1}
    assert agents_common._extract_json("no json here") is None
