"""Command line entry point: run one enrichment pass without the API server."""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import List, Optional

from leadscout.config import get_settings, parse_list
from leadscout.errors import LeadPipelineError
from leadscout.schemas import RunOptions

logger = logging.getLogger(__name__)


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="leadscout", description="Firecrawl + OpenAI + Google Sheets lead enrichment")
    parser.add_argument("--log-level", default="INFO")
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Crawl, extract, score and sync leads")
    run.add_argument("--url", help="Starting URL to crawl")
    run.add_argument("--urls", nargs="+", default=[], help="Multiple starting URLs")
    run.add_argument("--domains", dest="domains_file", help="Newline-separated file of domains/URLs")
    run.add_argument("--html-folder", help="Folder of saved HTML/Markdown pages to analyze instead of crawling")
    run.add_argument("--icp", help="Ideal customer profile used for extraction and scoring")
    run.add_argument("--directory", action="store_true", help="Treat inputs as listings and fan out to business sites")
    run.add_argument("--max-businesses", type=int, help="Businesses to take from each directory")
    run.add_argument("--sheet", dest="sheet_name", help="Tab name inside the spreadsheet")
    run.add_argument("--title", help="Spreadsheet title override")
    run.add_argument("--keyword", help="Keyword for the generated spreadsheet title")
    run.add_argument("--share", default="", help="Comma or space separated emails to share the spreadsheet with")
    run.add_argument("--sheet-folder", dest="sheet_folder_id", help="Drive folder id for new spreadsheets")
    run.add_argument("--reuse-sheet", action="store_true", help="Append to SHEET_ID instead of creating a spreadsheet")
    run.add_argument("--sheet-id", help="Spreadsheet id to reuse")
    run.add_argument("--max-depth", type=int)
    run.add_argument("--max-pages", type=int)
    run.add_argument("--max-prioritized-pages", type=int, help="Pages per target sent to the LLM")
    run.add_argument("--page-concurrency", type=int)
    run.add_argument("--domain-concurrency", type=int)
    run.add_argument("--model", help="Override the extraction/scoring model")
    run.add_argument("--delay", type=float, help="Delay between crawl requests in seconds")
    run.add_argument("--poll-interval", type=float, help="Crawl status poll interval in seconds")
    run.add_argument("--include-path", dest="include_paths", action="append", default=[])
    run.add_argument("--exclude-path", dest="exclude_paths", action="append", default=[])
    run.add_argument("--dry-run", action="store_true", default=None, help="Skip every Google Sheets write")
    run.add_argument("--output", help="Also write the run result JSON to this file")
    return parser


def options_from_args(args: argparse.Namespace) -> RunOptions:
    data = {key: value for key, value in vars(args).items() if key not in {"command", "log_level", "output", "share"}}
    data["share_with"] = parse_list(args.share.replace(" ", ","))
    return RunOptions(**data)


async def _run(options: RunOptions) -> dict:
    from leadscout.services.dispatcher import build_services, resolve_run_options, run_pipeline

    settings = get_settings()
    if settings.uses_sql_state:
        from leadscout.database import init_db

        init_db()
    return await run_pipeline(resolve_run_options(options, settings), build_services(settings))


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_arg_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )

    options = options_from_args(args)
    if not options.url and not options.urls and not options.domains_file:
        parser.error("provide --url, --urls or --domains")

    try:
        result = asyncio.run(_run(options))
    except LeadPipelineError as exc:
        logger.error("[CLI] Run failed (%s): %s", exc.kind, exc.message)
        return 1

    output_json = json.dumps(result, indent=2, default=str)
    print(output_json)
    if args.output:
        with open(args.output, "w", encoding="utf-8") as handle:
            handle.write(output_json)
        logger.info("[CLI] Wrote results to %s", args.output)
    if not result["dry_run"] and result.get("spreadsheet_url"):
        logger.info("[CLI] Spreadsheet URL: %s", result["spreadsheet_url"])
    return 0


if __name__ == "__main__":
    sys.exit(main())
