"""Executor - Playwright environment adapter."""

from typing import TYPE_CHECKING, Any

import structlog
from playwright.async_api import Browser, BrowserContext, async_playwright
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from taskpilot.core.config import Config
from taskpilot.core.errors import HostApiError
from taskpilot.core.types import ActionResult, Candidate, Geometry

if TYPE_CHECKING:
    from playwright.async_api import Page


logger = structlog.get_logger()


INTERACTIVE_SELECTOR = (
    "a[href], button, input, select, textarea, [role='button'], [role='link'], "
    "[role='checkbox'], [role='tab'], [role='menuitem'], [onclick], [contenteditable='true']"
)

CANDIDATE_ATTRIBUTES = (
    "id", "name", "type", "placeholder", "aria-label", "title", "href", "role", "value", "alt",
)

# Runs in the page; returns plain objects describing interactive elements.
EXTRACT_CANDIDATES_JS = """
([selector, attributeNames]) => {
  const depthOf = (el) => {
    let depth = 0;
    for (let node = el.parentElement; node; node = node.parentElement) depth++;
    return depth;
  };
  return Array.from(document.querySelectorAll(selector)).map((el) => {
    const rect = el.getBoundingClientRect();
    const style = window.getComputedStyle(el);
    const visible = rect.width > 0 && rect.height > 0 &&
      style.visibility !== 'hidden' && style.display !== 'none';
    const attributes = {};
    for (const name of attributeNames) {
      const value = el.getAttribute(name);
      if (value) attributes[name] = value.slice(0, 200);
    }
    return {
      kind: el.tagName.toLowerCase(),
      text: (el.innerText || el.value || '').trim().slice(0, 200),
      attributes,
      visible,
      interactive: !el.disabled,
      x: rect.x, y: rect.y, width: rect.width, height: rect.height,
      depth: depthOf(el),
    };
  });
}
"""


class PlaywrightEnvironment:
    """Browser environment adapter using Playwright."""

    def __init__(self, config: Config | None = None) -> None:
        """Initialize the environment.

        Args:
            config: Application configuration
        """
        self.config = config or Config()
        self._playwright = None
        self._browser: Browser | None = None
        self._context: BrowserContext | None = None
        self._page: "Page | None" = None

    async def start(self) -> "Page":
        """Start the browser and return the page.

        Returns:
            Playwright page instance
        """
        self._playwright = await async_playwright().start()
        self._browser = await self._playwright.chromium.launch(headless=self.config.headless)

        context_options: dict[str, Any] = {
            "viewport": {
                "width": self.config.viewport_width,
                "height": self.config.viewport_height,
            }
        }

        # Load storage state if provided
        if self.config.storage_state and self.config.storage_state.exists():
            logger.info("loading_storage_state", storage_state=str(self.config.storage_state))
            context_options["storage_state"] = str(self.config.storage_state)

        self._context = await self._browser.new_context(**context_options)
        self._page = await self._context.new_page()

        logger.info("browser_started", headless=self.config.headless)
        return self._page

    async def stop(self) -> None:
        """Stop the browser and cleanup resources."""
        if self._context:
            try:
                await self._context.close()
            except PlaywrightError as e:
                logger.debug("context_close_error", error=str(e))

        if self._browser:
            try:
                await self._browser.close()
            except PlaywrightError as e:
                logger.debug("browser_close_error", error=str(e))

        if self._playwright:
            await self._playwright.stop()

        self._page = None
        logger.info("browser_stopped")

    @property
    def page(self) -> "Page":
        """Get the current page instance."""
        if self._page is None:
            raise HostApiError("Browser not started. Call start() first.")
        return self._page

    def get_current_url(self) -> str:
        return self.page.url

    async def get_title(self) -> str:
        return await self.page.title()

    async def list_candidates(self, query: str | None = None) -> list[Candidate]:
        """Extract interactive elements from the current page.

        Args:
            query: Optional case-insensitive text filter

        Returns:
            Candidates in document order
        """
        raw = await self.page.evaluate(
            EXTRACT_CANDIDATES_JS, [INTERACTIVE_SELECTOR, list(CANDIDATE_ATTRIBUTES)]
        )

        candidates = [
            Candidate(
                index=index,
                kind=item["kind"],
                text_content=item.get("text") or "",
                attributes=item.get("attributes") or {},
                is_visible=bool(item.get("visible")),
                is_interactive=bool(item.get("interactive")),
                geometry=Geometry(
                    x=item.get("x", 0.0),
                    y=item.get("y", 0.0),
                    width=item.get("width", 0.0),
                    height=item.get("height", 0.0),
                ),
                depth=item.get("depth", 0),
            )
            for index, item in enumerate(raw)
        ]

        if query:
            needle = query.lower()
            candidates = [
                candidate
                for candidate in candidates
                if needle in candidate.text_content.lower()
                or any(needle in value.lower() for value in candidate.attributes.values())
            ]

        logger.debug("candidates_extracted", count=len(candidates), query=query)
        return candidates

    async def perform(self, action_name: str, params: dict[str, Any]) -> ActionResult:
        """Perform a primitive browser action.

        Supported primitives: navigate, click, type, select, scroll, press_key, wait.

        Args:
            action_name: Primitive name
            params: Primitive parameters

        Returns:
            Result of the primitive; browser failures are reported, not raised

        Raises:
            HostApiError: If the primitive is not supported
        """
        primitive = self._primitives().get(action_name)
        if primitive is None:
            raise HostApiError(f"Primitive {action_name} is not supported")

        try:
            data = await primitive(**params)
        except PlaywrightTimeoutError as e:
            logger.warning("primitive_timeout", action=action_name, error=str(e))
            return ActionResult(success=False, error=f"Browser operation timed out: {e}")
        except PlaywrightError as e:
            logger.warning("primitive_failed", action=action_name, error=str(e))
            return ActionResult(success=False, error=f"Browser error: {e}")

        return ActionResult(success=True, data=data, metadata={"url": self.page.url})

    def _primitives(self) -> dict[str, Any]:
        return {
            "navigate": self.navigate,
            "click": self.click,
            "type": self.type_text,
            "select": self.select,
            "scroll": self.scroll,
            "press_key": self.press_key,
            "wait": self.wait,
        }

    async def navigate(self, url: str) -> dict[str, Any]:
        """Navigate to a URL.

        Args:
            url: URL to navigate to
        """
        # "load" rather than "networkidle"; SPAs keep the network busy
        await self.page.goto(url, wait_until="load", timeout=self.config.navigation_timeout_ms)
        logger.info("navigated", url=url)
        return {"url": self.page.url, "title": await self.page.title()}

    async def click(self, x: int, y: int) -> dict[str, Any]:
        """Click at specific coordinates.

        Args:
            x: X coordinate
            y: Y coordinate
        """
        await self.page.mouse.click(x, y)
        logger.info("clicked", x=x, y=y)
        return {"x": x, "y": y}

    async def type_text(self, x: int, y: int, text: str, clear: bool = False) -> dict[str, Any]:
        """Click at coordinates and type text.

        Args:
            x: X coordinate
            y: Y coordinate
            text: Text to type
            clear: Select and replace existing content first
        """
        await self.page.mouse.click(x, y)
        if clear:
            await self.page.keyboard.press("ControlOrMeta+A")
        await self.page.keyboard.type(text)
        logger.info("typed", x=x, y=y, text_length=len(text))
        return {"x": x, "y": y, "text_length": len(text)}

    async def select(self, x: int, y: int, value: str) -> dict[str, Any]:
        """Click to open selector and choose value.

        Args:
            x: X coordinate of selector
            y: Y coordinate of selector
            value: Value to select
        """
        await self.page.mouse.click(x, y)
        await self.page.wait_for_timeout(200)  # Wait for dropdown

        await self.page.keyboard.type(value)
        await self.page.keyboard.press("Enter")
        logger.info("selected", x=x, y=y, value=value)
        return {"value": value}

    async def scroll(self, delta_y: int, x: int | None = None, y: int | None = None) -> dict[str, Any]:
        """Scroll at position.

        Args:
            delta_y: Scroll amount (positive = down, negative = up)
            x: X coordinate; defaults to the viewport center
            y: Y coordinate; defaults to the viewport center
        """
        x = x if x is not None else self.config.viewport_width // 2
        y = y if y is not None else self.config.viewport_height // 2
        await self.page.mouse.move(x, y)
        await self.page.mouse.wheel(0, delta_y)
        logger.info("scrolled", x=x, y=y, delta_y=delta_y)
        return {"delta_y": delta_y}

    async def press_key(self, key: str) -> dict[str, Any]:
        """Press a keyboard key.

        Args:
            key: Key to press (e.g., 'Enter', 'Escape', 'Tab')
        """
        await self.page.keyboard.press(key)
        logger.info("key_pressed", key=key)
        return {"key": key}

    async def wait(self, duration_ms: int) -> dict[str, Any]:
        await self.page.wait_for_timeout(duration_ms)
        return {"waited_ms": duration_ms}

    async def get_screenshot(self) -> bytes:
        """Get current screenshot as PNG bytes."""
        return await self.page.screenshot()
