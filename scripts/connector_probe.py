#!/usr/bin/env python3
import argparse
import json
import os
import sys
import time
from typing import Any, Dict, List, Optional


def _duration_ms(start: float) -> int:
    return int((time.time() - start) * 1000)


def load_declarative_configs(path: str) -> List[Dict[str, Any]]:
    """A JSON file holding one connector config object or a list of them."""
    if not path:
        return []
    with open(path, "r", encoding="utf-8") as handle:
        data = json.load(handle)
    return data if isinstance(data, list) else [data]


def probe_health(registry, ctx) -> Dict[str, Any]:
    start = time.time()
    statuses = registry.health(ctx)
    return {
        "health_ms": _duration_ms(start),
        "healthy_count": sum(1 for status in statuses if status.healthy),
        "total_count": len(statuses),
        "connectors": [status.to_dict() for status in statuses],
    }


def probe_search(connector, query: str, limit: int, ctx) -> Dict[str, Any]:
    result: Dict[str, Any] = {
        "key": connector.key,
        "name": connector.name,
        "search_ok": False,
        "search_count": 0,
        "search_ms": None,
        "results": [],
        "errors": [],
    }
    start = time.time()
    try:
        items = connector.search_by_title(query, limit, ctx)
        result["search_ok"] = True
        result["search_count"] = len(items)
        result["results"] = [item.to_dict() for item in items]
    except Exception as exc:
        result["errors"].append(f"search: {exc}")
    result["search_ms"] = _duration_ms(start)
    return result


def probe_resolve(connector, url: str, chapter: Optional[float], ctx) -> Dict[str, Any]:
    # Local import keeps the script importable before sys.path is patched
    from connectors import supports_chapter_urls  # pylint: disable=import-outside-toplevel

    result: Dict[str, Any] = {
        "key": connector.key,
        "url": url,
        "resolve_ok": False,
        "resolve_ms": None,
        "item": None,
        "errors": [],
    }
    start = time.time()
    try:
        result["item"] = connector.resolve_by_url(url, ctx).to_dict()
        result["resolve_ok"] = True
    except Exception as exc:
        result["errors"].append(f"resolve: {exc}")
    result["resolve_ms"] = _duration_ms(start)

    if chapter is None:
        return result

    result["chapter"] = chapter
    if not supports_chapter_urls(connector):
        result["errors"].append("chapter: connector has no chapter URLs")
        return result

    start = time.time()
    try:
        result["chapter_url"] = connector.resolve_chapter_url(url, chapter, ctx)
    except Exception as exc:
        result["errors"].append(f"chapter: {exc}")
    result["chapter_ms"] = _duration_ms(start)
    return result


def select_connectors(registry, requested: List[str]) -> List[Any]:
    if not requested:
        return [registry.get(item.key) for item in registry.list()]
    selected = []
    for key in requested:
        connector = registry.get(key)
        if connector is None:
            print(f"Unknown connector: {key}", file=sys.stderr)
            continue
        selected.append(connector)
    return selected


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Probe site connectors against the live sites.")
    parser.add_argument("--env", default=".env", help="Path to .env file for connector settings.")
    parser.add_argument("--config", default="", help="JSON file with declarative connector configs.")
    parser.add_argument("--timeout", type=float, default=60.0, help="Overall deadline in seconds.")
    parser.add_argument("--output", default="", help="Write the JSON report here instead of stdout.")

    commands = parser.add_subparsers(dest="command", required=True)
    commands.add_parser("health", help="Health-check every connector.")

    search = commands.add_parser("search", help="Search connectors by title.")
    search.add_argument("query", help="Title to search for.")
    search.add_argument("--connectors", default="", help="Comma-separated connector keys.")
    search.add_argument("--limit", type=int, default=5, help="Results per connector.")
    search.add_argument("--sleep", type=float, default=0.2, help="Sleep seconds between connectors.")

    resolve = commands.add_parser("resolve", help="Resolve an item URL.")
    resolve.add_argument("url", help="Item page URL; the connector is chosen by host.")
    resolve.add_argument("--chapter", type=float, default=None, help="Also resolve this chapter's URL.")

    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)

    sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

    from connectors import RequestContext  # pylint: disable=import-outside-toplevel
    from tracker_app import create_registry, load_config  # pylint: disable=import-outside-toplevel

    settings = load_config(args.env if os.path.exists(args.env) else None)
    registry = create_registry(settings, load_declarative_configs(args.config))
    ctx = RequestContext.with_timeout(args.timeout)

    report: Dict[str, Any] = {
        "generated_at": time.strftime("%Y-%m-%dT%H:%M:%S%z"),
        "command": args.command,
    }
    failed = False

    if args.command == "health":
        report.update(probe_health(registry, ctx))
        failed = report["healthy_count"] < report["total_count"]
    elif args.command == "search":
        requested = [item.strip() for item in args.connectors.split(",") if item.strip()]
        results = []
        for connector in select_connectors(registry, requested):
            results.append(probe_search(connector, args.query, args.limit, ctx))
            if args.sleep:
                time.sleep(args.sleep)
        report["query"] = args.query
        report["search_failures"] = sum(1 for item in results if not item["search_ok"])
        report["connectors"] = results
        failed = report["search_failures"] > 0
    else:
        connector = registry.get(args.url)
        if connector is None:
            print(f"No connector handles {args.url}", file=sys.stderr)
            return 2
        report.update(probe_resolve(connector, args.url, args.chapter, ctx))
        failed = bool(report["errors"])

    text = json.dumps(report, indent=2, sort_keys=True, ensure_ascii=False)
    if args.output:
        output_dir = os.path.dirname(args.output)
        if output_dir:
            os.makedirs(output_dir, exist_ok=True)
        with open(args.output, "w", encoding="utf-8") as handle:
            handle.write(text)
        print(f"Wrote report to {args.output}")
    else:
        print(text)
    return 1 if failed else 0


if __name__ == "__main__":
    raise SystemExit(main())
