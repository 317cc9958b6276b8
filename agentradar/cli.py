#!/usr/bin/env python3
"""
radar — agentradar CLI

Usage:
    radar init                      Create config and store directory
    radar sync                      Run one refresh cycle (ingest + scan + merge)
    radar status                    Config paths and store diagnostics
    radar projects [--all]          List projects (--all includes hidden ones)
    radar show <project_path>       Show one project's merged sessions and items
    radar alerts                    List activity alerts across projects
    radar hide <project_path>       Toggle a project's hidden state
    radar watch [--interval S]      Keep refreshing; print a line per cycle
"""

from __future__ import annotations

import json
import logging
import sys


def _json_out(data):
    print(json.dumps(data, indent=2, ensure_ascii=False, default=str))


def cmd_init(args):
    from agentradar.api import init
    result = init()
    for item in result["created"]:
        print(f"  created: {item}")
    for item in result["existing"]:
        print(f"  exists:  {item}")
    print("\nagentradar initialized.")
    print("Next: register hooks/capture.sh with your agent's hook settings")
    print("Then: radar watch")


def cmd_sync(args):
    from agentradar.api import sync
    print("Syncing...", file=sys.stderr)
    result = sync()
    print(
        f"  {result['events_consumed']} hook events, "
        f"{result['projects']} projects, "
        f"{result['files_written']} written",
        file=sys.stderr,
    )
    if result["alerts"]:
        print(f"  {result['alerts']} alerts (see: radar alerts)", file=sys.stderr)
    _json_out(result)


def cmd_status(args):
    from agentradar.api import status
    result = status()
    print(f"  config:   {result['config_path']}")
    print(f"  store:    {result['store_dir']}")
    print(f"  watching: {result['claude_dir']}")
    print(f"  data:     {result['projects']} projects, {result['hidden_projects']} hidden")
    print(f"  pending:  {result['events_pending_bytes']} bytes of hook events")
    if result.get("last_scan_at"):
        print(f"  last scan: {result['last_scan_at']} (schema v{result['schema_version']})")


def cmd_projects(args):
    from agentradar.api import projects
    items = projects(include_hidden="--all" in args)
    if not items:
        print("No projects found. Run: radar sync")
        return
    for p in items:
        mark = "*" if p["is_active"] else ("~" if p["has_history"] else " ")
        warn = f"  !{len(p['alerts'])}" if p["alerts"] else ""
        print(
            f"  [{mark}] {p['project_name']:20s}  "
            f"{p['completed_tasks']:3d}/{p['total_tasks']:<3d} done  "
            f"{p['in_progress_tasks']:2d} active  "
            f"{(p['last_activity'] or '?')[:10]:10s}  "
            f"{p['project_path']}{warn}"
        )
    print(f"\n  [{len(items)} projects, * = active, ~ = has history]")


def cmd_show(args):
    from agentradar.api import show
    if not args:
        _err("Usage: radar show <project_path>")
    result = show(args[0])
    if "error" in result:
        _err(result["error"])
    _json_out(result)


def cmd_alerts(args):
    from agentradar.api import alerts
    items = alerts()
    if not items:
        print("No alerts.")
        return
    for a in items:
        print(f"  [{a['severity']:7s}] {a['ts']}  {a['message']}  ({a['project_path']})")


def cmd_hide(args):
    from agentradar.api import hide
    if not args:
        _err("Usage: radar hide <project_path>")
    result = hide(args[0])
    state = "hidden" if result["hidden"] else "visible"
    print(f"  {result['project_path']}: {state}")


def cmd_watch(args):
    from agentradar.core.config import Config
    from agentradar.worker import RefreshWorker

    cfg = Config.load()
    interval = _get_opt(args, "--interval")
    if interval:
        cfg.poll_interval = float(interval)

    def report(result):
        alerts = sum(len(p.activity_alerts) for p in result.projects)
        active = sum(1 for p in result.projects if p.is_active)
        if result.events_consumed or result.files_written:
            print(
                f"  {len(result.projects)} projects ({active} active), "
                f"{result.events_consumed} events, {alerts} alerts",
                flush=True,
            )

    worker = RefreshWorker(cfg)
    print(f"Watching {cfg.resolved_claude_dir} (Ctrl-C to stop)", file=sys.stderr)
    try:
        worker.watch(on_cycle=report)
    except KeyboardInterrupt:
        pass
    finally:
        worker.close()


COMMANDS = {
    "init": cmd_init,
    "sync": cmd_sync,
    "status": cmd_status,
    "projects": cmd_projects,
    "show": cmd_show,
    "alerts": cmd_alerts,
    "hide": cmd_hide,
    "watch": cmd_watch,
}


def _get_opt(args, flag):
    """Extract value after a flag from args list."""
    if flag in args:
        idx = args.index(flag)
        if idx + 1 < len(args):
            return args[idx + 1]
    return None


def _err(msg):
    print(msg, file=sys.stderr)
    sys.exit(1)


def _setup_logging():
    from agentradar.core.config import Config
    logging.basicConfig(
        level=Config.load().log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def main():
    if len(sys.argv) < 2 or sys.argv[1] in ("-h", "--help", "help"):
        print(__doc__.strip())
        sys.exit(0)

    cmd = sys.argv[1]
    handler = COMMANDS.get(cmd)
    if not handler:
        print(f"Unknown command: {cmd}", file=sys.stderr)
        print(f"Available: {', '.join(COMMANDS.keys())}", file=sys.stderr)
        sys.exit(1)

    _setup_logging()
    handler(sys.argv[2:])


if __name__ == "__main__":
    main()
