"""Per-run log file and step manifest for a generation run."""
import json
import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


class RunLogger:
    def __init__(self, run_dir: str) -> None:
        self.run_dir = run_dir
        os.makedirs(self.run_dir, exist_ok=True)
        self.log_path = os.path.join(self.run_dir, "run.log")
        self.manifest_path = os.path.join(self.run_dir, "run_manifest.json")
        self.manifest: Dict[str, Any] = self._read_manifest()
        if not self.manifest:
            self.manifest = {
                "run_id": os.path.basename(run_dir),
                "started_at": _now(),
                "steps": {},
            }
        else:
            self.manifest.setdefault("run_id", os.path.basename(run_dir))
            self.manifest.setdefault("steps", {})

    @classmethod
    def for_group(cls, group_id: str, data_root: Optional[str] = None) -> "RunLogger":
        root = data_root or os.getenv("DATA_ROOT", "data")
        return cls(os.path.join(root, "runs", group_id))

    def step_dir(self, step: str) -> str:
        path = os.path.join(self.run_dir, step)
        os.makedirs(path, exist_ok=True)
        return path

    def log(self, message: str) -> None:
        with open(self.log_path, "a", encoding="utf-8") as f:
            f.write(f"[{_now()}] {message}\n")

    def save_step(self, step: str, payload: Dict[str, Any]) -> None:
        self.manifest["steps"].setdefault(step, {}).update(payload)
        self._flush()

    def write_json(self, path: str, data: Any) -> None:
        with open(path, "w", encoding="utf-8") as f:
            json.dump(data, f, ensure_ascii=True, indent=2)

    def tail(self, limit: int = 50) -> List[str]:
        if not os.path.exists(self.log_path):
            return []
        with open(self.log_path, "r", encoding="utf-8") as f:
            lines = f.read().splitlines()
        return lines[-limit:]

    def _read_manifest(self) -> Dict[str, Any]:
        if not os.path.exists(self.manifest_path):
            return {}
        try:
            with open(self.manifest_path, "r", encoding="utf-8") as f:
                return json.load(f)
        except Exception:
            return {}

    def _flush(self) -> None:
        self.manifest["updated_at"] = _now()
        with open(self.manifest_path, "w", encoding="utf-8") as f:
            json.dump(self.manifest, f, ensure_ascii=True, indent=2)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
