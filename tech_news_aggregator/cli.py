from __future__ import annotations

import argparse
import asyncio
import logging
import sys
import threading

from dotenv import load_dotenv

from tech_news_aggregator.config import load_config, load_default_sources
from tech_news_aggregator.heat import display_heat
from tech_news_aggregator.pipeline import CycleAlreadyRunningError, ManualAddError
from tech_news_aggregator.service import NewsService
from tech_news_aggregator.storage import Store, StoreError
from tech_news_aggregator.summarize import SummarizerError
from tech_news_aggregator.types import Article, SummaryComplete, SummaryEvent, SummaryProgress, SummaryStart


def _print_article(a: Article) -> None:
    flags = ("*" if a.is_bookmarked else " ") + (" " if a.is_read else "N")
    print(f"{flags} [{display_heat(a.heat_score):5.1f}] {a.published_at[:16]} {a.category.value:<8} {a.title}")
    print(f"      {a.source} | {a.url} | id={a.id}")


def _print_progress(event: SummaryEvent) -> None:
    if isinstance(event, SummaryStart):
        print(f"Regenerating {event.total} summaries")
    elif isinstance(event, SummaryProgress):
        suffix = f" (fallback: {event.last_error})" if event.last_error else ""
        print(f"  {event.current}/{event.total} {event.title[:60]}{suffix}")
    elif isinstance(event, SummaryComplete):
        state = "cancelled" if event.cancelled else "done"
        print(f"{state}: {event.total_updated} updated, {event.total_processed} processed")


def _parse_bool(value: str) -> bool:
    v = value.strip().lower()
    if v in ("1", "true", "yes", "on"):
        return True
    if v in ("0", "false", "no", "off"):
        return False
    raise argparse.ArgumentTypeError(f"not a boolean: {value}")


def _coerce_setting(current: object, value: str) -> object:
    if isinstance(current, bool):
        return _parse_bool(value)
    if isinstance(current, int):
        return int(value)
    if isinstance(current, float):
        return float(value)
    return value


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Aggregate, rank and search tech news")
    parser.add_argument("--config", default=None, help="Path to config YAML (default: config/config.yaml if present)")
    parser.add_argument("--db", default=None, help="SQLite database path (overrides config and NEWS_DB_PATH)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("crawl", help="Run one ingestion cycle")
    p.add_argument("--due-only", action="store_true", help="Skip sources fetched within their interval")

    p = sub.add_parser("list", help="List stored articles")
    p.add_argument("--page", type=int, default=1)
    p.add_argument("--page-size", type=int, default=20)
    p.add_argument("--category", default=None)
    p.add_argument("--order", choices=["latest", "heat"], default="latest")

    p = sub.add_parser("search", help="Full-text search")
    p.add_argument("keyword")
    p.add_argument("--category", default=None)
    p.add_argument("--source", default=None)
    p.add_argument("--since", default=None, help="Earliest published_at (ISO timestamp)")
    p.add_argument("--until", default=None, help="Latest published_at (ISO timestamp)")

    p = sub.add_parser("add", help="Add an article from a URL")
    p.add_argument("url")

    p = sub.add_parser("bookmark", help="Set or clear a bookmark")
    p.add_argument("id")
    p.add_argument("value", type=_parse_bool, nargs="?", default=True)

    p = sub.add_parser("read", help="Mark an article read or unread")
    p.add_argument("id")
    p.add_argument("value", type=_parse_bool, nargs="?", default=True)

    sub.add_parser("summaries", help="Regenerate templated summaries with the AI endpoint")

    p = sub.add_parser("summarize", help="Summarize a piece of text")
    p.add_argument("text")

    sub.add_parser("cleanup", help="Archive, purge and trim old articles")
    sub.add_parser("reindex", help="Rebuild the full-text index from stored articles")

    p = sub.add_parser("sources", help="List sources or toggle one")
    p.add_argument("--enable", metavar="NAME", default=None)
    p.add_argument("--disable", metavar="NAME", default=None)

    p = sub.add_parser("settings", help="Show or change settings")
    p.add_argument("--set", metavar="KEY=VALUE", action="append", default=[])
    return parser


async def _run(service: NewsService, args: argparse.Namespace) -> int:
    cmd = args.command

    if cmd == "crawl":
        result = await service.run_ingestion_cycle_once(due_only=args.due_only)
        print(result.describe())
        return 0

    if cmd == "list":
        res = service.list_articles(page=args.page, page_size=args.page_size, category=args.category, order=args.order)
        for a in res.items:
            _print_article(a)
        print(f"page {res.page}, {len(res.items)} of {res.total}")
        return 0

    if cmd == "search":
        hits = service.search(
            args.keyword, category=args.category, source=args.source, since=args.since, until=args.until
        )
        for a in hits:
            _print_article(a)
        print(f"{len(hits)} results")
        return 0

    if cmd == "add":
        a = await service.manual_add(args.url)
        _print_article(a)
        return 0

    if cmd == "bookmark":
        service.toggle_bookmark(args.id, args.value)
        return 0

    if cmd == "read":
        service.toggle_read(args.id, args.value)
        return 0

    if cmd == "summaries":
        cancel = threading.Event()
        try:
            await service.regenerate_summaries(on_progress=_print_progress, cancel_event=cancel)
        except asyncio.CancelledError:
            cancel.set()
            raise
        return 0

    if cmd == "summarize":
        print(await service.summarize(args.text))
        return 0

    if cmd == "cleanup":
        r = service.cleanup()
        print(f"{r.archived} archived, {r.purged} purged, {r.trimmed} trimmed")
        return 0

    if cmd == "reindex":
        print(f"{service.reindex()} articles indexed")
        return 0

    if cmd == "sources":
        if args.enable:
            service.set_source_active(args.enable, True)
        if args.disable:
            service.set_source_active(args.disable, False)
        for s in service.list_sources():
            state = "on " if s.is_active else "off"
            last = s.last_fetch_at or "never"
            print(f"{state} {s.priority:>3} {s.kind.value:<8} {s.weight:.1f} {s.name} ({s.url}) last: {last}")
        return 0

    if cmd == "settings":
        if args.set:
            current = service.get_settings()
            changes: dict[str, object] = {}
            for item in args.set:
                key, sep, value = item.partition("=")
                if not sep:
                    print(f"invalid setting: {item}", file=sys.stderr)
                    return 2
                changes[key] = _coerce_setting(getattr(current, key, ""), value)
            service.update_settings(**changes)
        s = service.get_settings()
        for k, v in s.__dict__.items():
            if k == "ai_api_key" and v:
                v = v[:4] + "..."
            print(f"{k} = {v}")
        return 0

    raise ValueError(f"unknown command: {cmd}")


def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    args = build_parser().parse_args(argv)

    cfg = load_config(args.config)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else cfg.log_level,
        format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
    )

    store = Store(args.db or cfg.db_path, seed_sources=load_default_sources())
    service = NewsService(cfg, store)
    try:
        return asyncio.run(_run(service, args))
    except ManualAddError as e:
        print(f"cannot add ({e.reason}): {e}", file=sys.stderr)
        return 1
    except CycleAlreadyRunningError as e:
        print(str(e), file=sys.stderr)
        return 1
    except SummarizerError as e:
        print(f"summarizer: {e}", file=sys.stderr)
        return 1
    except (StoreError, ValueError) as e:
        print(str(e), file=sys.stderr)
        return 1
    finally:
        service.close()


if __name__ == "__main__":
    raise SystemExit(main())
