"""Shared LLM client for the segment agents."""
import json
import os
import urllib.request
from dataclasses import dataclass
from typing import Any, Dict, List, Optional


_DEFAULT_TEMPERATURES: Dict[str, float] = {
    "generator": 0.7,
    "visual_state": 0.05,
}

SYSTEM_JSON_ONLY = "You must respond with JSON only. No prose."
SYSTEM_REPAIR = "You fix invalid JSON. Return only valid JSON. No prose."


def _agent_temp_env_key(agent_name: str) -> str:
    normalized = "".join(ch if ch.isalnum() else "_" for ch in (agent_name or "default"))
    return f"LLM_TEMPERATURE_{normalized.upper()}"


def _resolve_temperature(agent_name: str) -> float:
    # LLM_TEMPERATURE_<AGENT> overrides the table.
    value = os.getenv(_agent_temp_env_key(agent_name))
    if value is not None:
        return float(value)
    return _DEFAULT_TEMPERATURES.get(agent_name, 0.1)


@dataclass
class LLMConfig:
    agent_name: str = "default"
    model: Optional[str] = None
    base_url: Optional[str] = None
    api_key: Optional[str] = None
    temperature: Optional[float] = None
    seed: Optional[int] = None
    max_tokens: Optional[int] = None
    json_only: bool = True
    timeout_sec: Optional[int] = None

    def __post_init__(self) -> None:
        if self.model is None:
            self.model = os.getenv("LLM_MODEL", "Qwen/Qwen2.5-3B-Instruct")
        if self.base_url is None:
            self.base_url = os.getenv("VLLM_BASE_URL", "http://localhost:8000/v1")
        if self.api_key is None:
            self.api_key = os.getenv("VLLM_API_KEY", "EMPTY")
        if self.seed is None:
            self.seed = int(os.getenv("LLM_SEED", "42"))
        if self.max_tokens is None:
            self.max_tokens = int(os.getenv("LLM_MAX_TOKENS", "2048"))
        if self.timeout_sec is None:
            self.timeout_sec = int(os.getenv("LLM_TIMEOUT_SEC", "60"))
        if self.temperature is None:
            self.temperature = _resolve_temperature(self.agent_name)


class LLMClient:
    """vLLM OpenAI-compatible chat client returning parsed JSON."""

    def __init__(self, config: Optional[LLMConfig] = None, agent_name: str = "default") -> None:
        self.config = config or LLMConfig(agent_name=agent_name)
        self.last_raw: Optional[str] = None
        self.last_prompt: Optional[str] = None
        self.last_messages: Optional[List[Dict[str, str]]] = None

    def complete_json(self, prompt: str) -> Dict[str, Any]:
        self.last_prompt = prompt
        last_err: Optional[Exception] = None
        user_prompt = prompt
        for _ in range(3):
            content = self._chat(SYSTEM_JSON_ONLY, user_prompt, self.config.temperature)
            try:
                return ensure_json_only(content)
            except json.JSONDecodeError as err:
                last_err = err
                salvage = _extract_json(content)
                if salvage is not None:
                    return salvage
                repaired = self._repair_json(content)
                if repaired is not None:
                    return repaired
                user_prompt = "Return valid JSON only. Do not include any other text.\n\n" + prompt
        raise last_err or RuntimeError("Failed to parse JSON from LLM")

    def _chat(self, system_msg: str, prompt: str, temperature: Optional[float]) -> str:
        url = self.config.base_url.rstrip("/") + "/chat/completions"
        headers = {"Content-Type": "application/json"}
        if self.config.api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key}"
        payload: Dict[str, Any] = {
            "model": self.config.model,
            "messages": [
                {"role": "system", "content": system_msg},
                {"role": "user", "content": prompt},
            ],
            "temperature": temperature,
            "max_tokens": self.config.max_tokens,
        }
        self.last_messages = list(payload["messages"])
        if self.config.seed is not None:
            payload["seed"] = self.config.seed
        if self.config.json_only:
            payload["response_format"] = {"type": "json_object"}
        req = urllib.request.Request(url, data=json.dumps(payload).encode("utf-8"), headers=headers)
        with urllib.request.urlopen(req, timeout=self.config.timeout_sec) as resp:
            raw = resp.read().decode("utf-8")
        self.last_raw = raw
        choices = json.loads(raw).get("choices", [])
        if not choices:
            raise RuntimeError("LLM returned no choices")
        return choices[0].get("message", {}).get("content", "")

    def _repair_json(self, bad_json: str) -> Optional[Dict[str, Any]]:
        prompt = "Fix the JSON below. Return valid JSON only.\n\n<json>\n" + bad_json + "\n</json>"
        try:
            return ensure_json_only(self._chat(SYSTEM_REPAIR, prompt, 0.0))
        except Exception:
            return None


def ensure_json_only(text: str) -> Dict[str, Any]:
    """Parse a JSON-only response string."""
    return json.loads(text)


def _extract_json(text: str) -> Optional[Dict[str, Any]]:
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end == -1 or end <= start:
        return None
    try:
        return json.loads(text[start : end + 1])
    except Exception:
        return None
