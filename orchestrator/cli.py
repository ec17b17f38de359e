"""CLI entrypoint for segment planning and generation runs."""
import argparse
import json
import os
import sys
from typing import Any, Dict, List, Optional

from mcp_servers.segments.server import SegmentService

from .errors import PipelineError
from .gates import render_continuity_report_markdown, render_segment_plan_markdown
from .models import SegmentDescriptor
from .run_logger import RunLogger


def _service(args: argparse.Namespace) -> SegmentService:
    return SegmentService(db_path=args.db_path)


def segment(args: argparse.Namespace) -> Dict[str, Any]:
    with open(args.episode, "r", encoding="utf-8") as f:
        episode = json.load(f)
    res = _service(args).create_segment_group(
        episode,
        target_duration=args.target,
        min_duration=args.min,
        max_duration=args.max,
        prefer_scene_boundaries=not args.allow_mid_scene_splits,
    )
    segments = [SegmentDescriptor.from_dict(s) for s in res["segments"]]
    print(render_segment_plan_markdown(segments, title=res["group"].get("title") or ""))
    print("group_id:", res["group"]["group_id"])
    return res


def generate(args: argparse.Namespace) -> Dict[str, Any]:
    res = _service(args).generate_segments(
        args.group_id,
        platform=args.platform,
        anchor_point_interval=args.anchor_interval,
        validate_continuity=False if args.no_validate else None,
        strict_mode=True if args.strict else None,
        apply_auto_correction=True if args.apply_corrections else None,
        force=args.force,
    )
    if args.output:
        out_dir = os.path.dirname(os.path.abspath(args.output))
        os.makedirs(out_dir, exist_ok=True)
        with open(args.output, "w", encoding="utf-8") as f:
            json.dump(res, f, ensure_ascii=True, indent=2)
        print(args.output)
    group = res["segment_group"]
    print(f"status: {group['status']} ({group['completed_segments']}/{group['total_segments']})")
    print("anchor_points_used:", res["anchor_points_used"])
    if res.get("error"):
        print("error:", res["error"]["message"])
    return res


def report(args: argparse.Namespace) -> Dict[str, Any]:
    res = _service(args).continuity_report(args.group_id)
    group = res["group"]
    print(f"status: {group['status']} ({group['completed_segments']}/{group['total_segments']})")
    if group.get("error_message"):
        print("error:", group["error_message"])
    if res["continuity_report"]:
        print(render_continuity_report_markdown(res["continuity_report"]))
    else:
        print("no continuity report recorded")
    run_dir = os.path.join(os.getenv("DATA_ROOT", "data"), "runs", args.group_id)
    if args.log_lines > 0 and os.path.isdir(run_dir):
        lines = RunLogger(run_dir).tail(args.log_lines)
        if lines:
            print("recent log:")
            for line in lines:
                print("  " + line)
    return res


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Plan and generate continuity-preserving video segments")
    parser.add_argument("--db-path", default=None, help="SQLite path (defaults to SEGMENTS_DB_PATH)")
    sub = parser.add_subparsers(dest="command", required=True)

    seg = sub.add_parser("segment", help="Split an episode JSON into a stored segment plan")
    seg.add_argument("episode", help="Path to episode JSON")
    seg.add_argument("--target", type=float, default=10.0)
    seg.add_argument("--min", type=float, default=None)
    seg.add_argument("--max", type=float, default=None)
    seg.add_argument(
        "--allow-mid-scene-splits",
        action="store_true",
        help="Split the next scene to fill a segment that would close below the minimum",
    )
    seg.set_defaults(func=segment)

    gen = sub.add_parser("generate", help="Generate (or resume) a segment group")
    gen.add_argument("group_id")
    gen.add_argument("--platform", default=None)
    gen.add_argument("--anchor-interval", type=int, default=None, help="Anchor point interval (2-5)")
    gen.add_argument("--no-validate", action="store_true", help="Skip continuity validation")
    gen.add_argument("--strict", action="store_true", help="Strict continuity scoring")
    gen.add_argument("--apply-corrections", action="store_true", help="Send auto-corrected briefs to the generator")
    gen.add_argument("--force", action="store_true", help="Run even if the group is marked generating")
    gen.add_argument("--output", default=None, help="Write the pipeline result JSON here")
    gen.set_defaults(func=generate)

    rep = sub.add_parser("report", help="Show group status and the stored continuity report")
    rep.add_argument("group_id")
    rep.add_argument("--log-lines", type=int, default=10, help="Trailing run log lines to show (0 hides them)")
    rep.set_defaults(func=report)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        res = args.func(args)
    except PipelineError as exc:
        print(json.dumps(exc.payload, ensure_ascii=True), file=sys.stderr)
        return 1
    except ValueError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2
    if args.command == "generate" and res.get("error"):
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
