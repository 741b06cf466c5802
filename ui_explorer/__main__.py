import argparse
import asyncio
import logging
import sys

from .browser import PlaywrightBrowser
from .config import ExplorerConfig, load_config
from .crawler import Crawler
from .errors import ExplorerError
from .knowledge import VIEWPORTS
from .report import run_failed, write_report

logger = logging.getLogger("ui_explorer")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Explore a web app as a state graph and verify action side-effects")
    parser.add_argument("--url", help="Base URL of the app to explore (overrides baseUrl from --config)")
    parser.add_argument("--config", help="JSON config file (adapters, action schemas, validators, limits)")
    parser.add_argument("--out", help="Directory to save the report and screenshots")
    parser.add_argument("--max-depth", type=int, help="Maximum number of actions from a start URL")
    parser.add_argument("--max-states", type=int, help="Maximum number of distinct states to visit")
    parser.add_argument("--viewport", action="append", choices=sorted(VIEWPORTS), help="Viewport to explore (repeatable)")
    parser.add_argument("--headed", action="store_true", help="Show the browser window")
    parser.add_argument("--no-screenshots", action="store_true", help="Do not capture a screenshot per state")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser


def resolve_config(args: argparse.Namespace) -> ExplorerConfig:
    config = load_config(args.config) if args.config else None
    if config is None:
        config = ExplorerConfig(base_url=args.url)
    elif args.url:
        config.base_url = args.url
        config.start_urls = [args.url]
    if args.out:
        config.output.dir = args.out
    if args.max_depth is not None:
        config.exploration.max_depth = args.max_depth
    if args.max_states is not None:
        config.exploration.max_states = args.max_states
    if args.viewport:
        config.exploration.viewports = args.viewport
    if args.headed:
        config.headless = False
    if args.no_screenshots:
        config.output.screenshots = False
    return config


async def run(config: ExplorerConfig):
    async with PlaywrightBrowser(
        browser=config.browser,
        headless=config.headless,
        storage_state=config.auth,
        cookies=config.cookies,
        extra_http_headers=config.extra_http_headers,
        timeout_ms=config.exploration.timeout_ms,
    ) as browser:
        crawler = Crawler(config, browser, screenshot_dir=config.output.dir)
        return await crawler.explore()


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.url and not args.config:
        parser.error("either --url or --config is required")
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        config = resolve_config(args)
        logger.info("Starting exploration of %s", config.base_url)
        result = asyncio.run(run(config))
    except ExplorerError as exc:
        logger.error("Exploration aborted: %s", exc)
        return 2

    write_report(result, config.output.dir)
    s = result.summary
    print(f"Exploration finished. States: {s.states_explored}, actions: {s.actions_performed} ({s.actions_failed} failed)")
    print(f"Issues: {s.issues_found}, verifications: {s.verifications_passed} passed / {s.verifications_failed} failed")
    return 1 if run_failed(result) else 0


if __name__ == "__main__":
    sys.exit(main())
