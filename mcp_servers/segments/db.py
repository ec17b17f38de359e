import json
import os
import sqlite3
from dataclasses import fields
from typing import Any, Dict, List, Optional, Sequence

from orchestrator.models import GeneratedArtifact, SegmentDescriptor, SegmentGroup, VisualState, now_iso

BASE_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
DEFAULT_DATA_DIR = os.path.join(BASE_DIR, "data")
DEFAULT_DB_PATH = os.path.join(DEFAULT_DATA_DIR, "sqlite", "segments.db")
SCHEMA_PATH = os.path.join(os.path.dirname(__file__), "schema.sql")

_GROUP_COLUMNS = (
    "group_id",
    "episode_id",
    "title",
    "total_segments",
    "completed_segments",
    "status",
    "error_message",
    "generation_started_at",
    "generation_completed_at",
    "created_at",
    "updated_at",
)


def _ensure_dir(path: str) -> None:
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)


def _known_fields(cls: Any, data: Dict[str, Any]) -> Dict[str, Any]:
    names = {f.name for f in fields(cls)}
    return {k: v for k, v in data.items() if k in names}


class SegmentStore:
    def __init__(self, db_path: Optional[str] = None) -> None:
        self.db_path = db_path or os.getenv("SEGMENTS_DB_PATH", DEFAULT_DB_PATH)
        _ensure_dir(self.db_path)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys=ON")
        return conn

    def _init_db(self) -> None:
        with self._connect() as conn:
            with open(SCHEMA_PATH, "r", encoding="utf-8") as f:
                conn.executescript(f.read())

    def save_report(self, group_id: str, report: Dict[str, Any]) -> None:
        with self._connect() as conn:
            conn.execute(
                "UPDATE segment_groups SET continuity_report_json = ? WHERE group_id = ?",
                (json.dumps(report), group_id),
            )

    def get_report(self, group_id: str) -> Optional[Dict[str, Any]]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT continuity_report_json FROM segment_groups WHERE group_id = ?",
                (group_id,),
            ).fetchone()
        if not row or not row["continuity_report_json"]:
            return None
        return json.loads(row["continuity_report_json"])


class SQLiteSegmentGroupRepo:
    def __init__(self, store: SegmentStore) -> None:
        self.store = store

    def create(self, group: SegmentGroup) -> SegmentGroup:
        values = group.to_dict()
        with self.store._connect() as conn:
            conn.execute(
                "INSERT INTO segment_groups(%s) VALUES (%s)"
                % (", ".join(_GROUP_COLUMNS), ", ".join(["?"] * len(_GROUP_COLUMNS))),
                [values[c] for c in _GROUP_COLUMNS],
            )
        return group

    def get(self, group_id: str) -> Optional[SegmentGroup]:
        with self.store._connect() as conn:
            row = conn.execute(
                "SELECT %s FROM segment_groups WHERE group_id = ?" % ", ".join(_GROUP_COLUMNS),
                (group_id,),
            ).fetchone()
        if not row:
            return None
        return SegmentGroup(**{c: row[c] for c in _GROUP_COLUMNS})

    def list(self, episode_id: Optional[str] = None) -> List[SegmentGroup]:
        sql = "SELECT %s FROM segment_groups" % ", ".join(_GROUP_COLUMNS)
        params: List[Any] = []
        if episode_id:
            sql += " WHERE episode_id = ?"
            params.append(episode_id)
        sql += " ORDER BY created_at"
        with self.store._connect() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [SegmentGroup(**{c: row[c] for c in _GROUP_COLUMNS}) for row in rows]

    def update(self, group: SegmentGroup) -> SegmentGroup:
        group.updated_at = now_iso()
        values = group.to_dict()
        columns = [c for c in _GROUP_COLUMNS if c not in ("group_id", "created_at")]
        with self.store._connect() as conn:
            cur = conn.execute(
                "UPDATE segment_groups SET %s WHERE group_id = ?"
                % ", ".join(f"{c} = ?" for c in columns),
                [values[c] for c in columns] + [group.group_id],
            )
            if cur.rowcount == 0:
                raise KeyError(f"segment group not found: {group.group_id}")
        return group


class SQLiteSegmentRepo:
    def __init__(self, store: SegmentStore) -> None:
        self.store = store

    def save_all(self, group_id: str, segments: Sequence[SegmentDescriptor]) -> None:
        with self.store._connect() as conn:
            conn.executemany(
                """
                INSERT INTO video_segments(segment_id, group_id, episode_id, segment_number, descriptor_json, final_visual_state_json)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        s.segment_id,
                        group_id,
                        s.episode_id,
                        s.segment_number,
                        json.dumps(s.to_dict()),
                        json.dumps(s.final_visual_state.to_dict()) if s.final_visual_state else None,
                    )
                    for s in segments
                ],
            )

    def list_for_group(self, group_id: str) -> List[SegmentDescriptor]:
        with self.store._connect() as conn:
            rows = conn.execute(
                """
                SELECT descriptor_json, final_visual_state_json FROM video_segments
                WHERE group_id = ?
                ORDER BY segment_number
                """,
                (group_id,),
            ).fetchall()
        segments: List[SegmentDescriptor] = []
        for row in rows:
            segment = SegmentDescriptor.from_dict(json.loads(row["descriptor_json"]))
            if row["final_visual_state_json"]:
                segment.final_visual_state = VisualState.from_dict(json.loads(row["final_visual_state_json"]))
            segments.append(segment)
        return segments

    def set_final_visual_state(self, segment_id: str, state: VisualState) -> None:
        with self.store._connect() as conn:
            cur = conn.execute(
                "UPDATE video_segments SET final_visual_state_json = ? WHERE segment_id = ?",
                (json.dumps(state.to_dict()), segment_id),
            )
            if cur.rowcount == 0:
                raise KeyError(f"segment not found: {segment_id}")


class SQLiteArtifactRepo:
    def __init__(self, store: SegmentStore) -> None:
        self.store = store

    def save(self, artifact: GeneratedArtifact) -> GeneratedArtifact:
        with self.store._connect() as conn:
            conn.execute(
                """
                INSERT INTO videos(artifact_id, group_id, segment_id, segment_number, artifact_json, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    artifact.artifact_id,
                    artifact.group_id,
                    artifact.segment_id,
                    artifact.segment_number,
                    json.dumps(artifact.to_dict()),
                    artifact.created_at,
                ),
            )
        return artifact

    def list_for_group(self, group_id: str) -> List[GeneratedArtifact]:
        with self.store._connect() as conn:
            rows = conn.execute(
                "SELECT artifact_json FROM videos WHERE group_id = ? ORDER BY segment_number",
                (group_id,),
            ).fetchall()
        return [GeneratedArtifact(**_known_fields(GeneratedArtifact, json.loads(row["artifact_json"]))) for row in rows]
