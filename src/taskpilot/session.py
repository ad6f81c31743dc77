"""
taskpilot Session Helper

Opens a visible browser so you can log in by hand, then saves the browser
storage state (cookies, local storage) for later runs.

Usage:
    taskpilot-login --url https://github.com --output github_state.json
    taskpilot "Open my notifications" --storage-state github_state.json
"""

import argparse
import asyncio
import sys
from pathlib import Path
from typing import Callable

import structlog
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import async_playwright

from taskpilot.core.config import Config


logger = structlog.get_logger()


async def save_session(
    url: str,
    output_file: Path,
    config: Config | None = None,
    wait_for_user: Callable[[str], str] = input,
) -> Path:
    """Open a headed browser at ``url`` and persist its state once the user confirms.

    Args:
        url: Login page to open
        output_file: Where the storage state JSON is written
        config: Application configuration (viewport size)
        wait_for_user: Blocking prompt; returns when the user is logged in

    Returns:
        Path of the written storage state file
    """
    config = config or Config()

    async with async_playwright() as p:
        browser = await p.chromium.launch(headless=False)
        try:
            context = await browser.new_context(
                viewport={"width": config.viewport_width, "height": config.viewport_height}
            )
            page = await context.new_page()
            await page.goto(url, timeout=config.navigation_timeout_ms)
            logger.info("login_page_opened", url=url)

            await asyncio.to_thread(
                wait_for_user, "Press ENTER once you are logged in to save the session..."
            )

            await context.storage_state(path=str(output_file))
            logger.info("session_saved", path=str(output_file))
        finally:
            await browser.close()

    return output_file


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="taskpilot-login",
        description="Save a logged-in browser session for taskpilot --storage-state",
    )
    parser.add_argument("--url", type=str, required=True, help="Login page URL")
    parser.add_argument(
        "--output", type=str, required=True, help="Storage state JSON file to write"
    )
    parser.add_argument(
        "--force", action="store_true", help="Overwrite the output file if it exists"
    )
    return parser


def main() -> int:
    """Entry point for the session helper."""
    args = create_parser().parse_args()
    output_path = Path(args.output)

    if output_path.exists() and not args.force:
        print(f"❌ {output_path} already exists (use --force to overwrite)")
        return 1

    print(f"🔐 Opening {args.url}; log in, then return to this terminal.")
    try:
        asyncio.run(save_session(args.url, output_path))
    except KeyboardInterrupt:
        print("\n⚠️  Login cancelled by user")
        return 1
    except PlaywrightError as e:
        print(f"❌ Browser error: {e}")
        return 1

    print(f"✅ Session saved to {output_path}")
    print(f'   taskpilot "Your task" --storage-state {output_path}')
    print("   Keep this file private: it contains your login cookies.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
