"""Built-in browser actions registered with the action registry."""

from typing import Any

import structlog

from taskpilot.core.config import Config
from taskpilot.core.errors import TargetNotFoundError
from taskpilot.core.interfaces import EnvironmentAdapter
from taskpilot.core.types import ActionResult, Candidate, ResolutionContext, RiskTier
from taskpilot.registry import ActionRegistry
from taskpilot.resolver import LiveTargetResolver


logger = structlog.get_logger()


DEFAULT_SCROLL_PIXELS = 600
MAX_WAIT_MS = 60000


def _has_target(params: dict[str, Any]) -> bool:
    target = params.get("target")
    index = params.get("index")
    if isinstance(target, str) and target.strip():
        return True
    return isinstance(index, int) and not isinstance(index, bool) and index >= 0


def valid_navigate(params: dict[str, Any]) -> bool:
    url = params.get("url")
    return isinstance(url, str) and url.startswith(("http://", "https://"))


def valid_click(params: dict[str, Any]) -> bool:
    return _has_target(params)


def valid_input(params: dict[str, Any]) -> bool:
    return _has_target(params) and isinstance(params.get("text"), str)


def valid_scroll(params: dict[str, Any]) -> bool:
    direction = params.get("direction", "down")
    amount = params.get("amount", DEFAULT_SCROLL_PIXELS)
    return direction in ("up", "down") and isinstance(amount, int) and amount > 0


def valid_wait(params: dict[str, Any]) -> bool:
    duration = params.get("duration_ms")
    return isinstance(duration, int) and 0 <= duration <= MAX_WAIT_MS


class BrowserActions:
    """Browser actions that resolve targets and delegate to the environment.

    Element targets are given either as a natural-language ``target``
    (resolved with confidence scoring) or as a candidate ``index`` from
    the latest snapshot.
    """

    def __init__(
        self,
        environment: EnvironmentAdapter,
        resolver: LiveTargetResolver | None = None,
        config: Config | None = None,
    ) -> None:
        """Initialize the actions.

        Args:
            environment: Environment adapter performing primitives
            resolver: Target resolver; one over ``environment`` is created if omitted
            config: Application configuration
        """
        self.config = config or Config()
        self.environment = environment
        self.resolver = resolver or LiveTargetResolver(environment, config=self.config)

    def register_all(self, registry: ActionRegistry) -> None:
        """Register every browser action with a registry."""
        registry.register(
            "navigate",
            self.navigate,
            validate=valid_navigate,
            description="Navigate to a URL. Params: url",
            risk_tier=RiskTier.LOW,
        )
        registry.register(
            "click_element",
            self.click_element,
            validate=valid_click,
            description="Click an element. Params: target (description) or index",
            risk_tier=RiskTier.MEDIUM,
        )
        registry.register(
            "input_text",
            self.input_text,
            validate=valid_input,
            description="Type text into an element. Params: target or index, text, clear",
            risk_tier=RiskTier.MEDIUM,
        )
        registry.register(
            "scroll",
            self.scroll,
            validate=valid_scroll,
            description="Scroll the page. Params: direction (up/down), amount (pixels)",
        )
        registry.register(
            "wait",
            self.wait,
            validate=valid_wait,
            description="Wait for the page to settle. Params: duration_ms",
            category="utility",
        )
        registry.register(
            "done",
            self.done,
            description="Signal that the task is complete. Params: message",
            category="utility",
        )

    async def navigate(self, params: dict[str, Any]) -> ActionResult:
        result = await self.environment.perform("navigate", {"url": params["url"]})
        self.resolver.invalidate()
        return result

    async def click_element(self, params: dict[str, Any]) -> ActionResult:
        candidate = await self._locate(params)
        x, y = self._center(candidate)
        result = await self.environment.perform("click", {"x": x, "y": y})
        self.resolver.invalidate()
        return self._with_target(result, candidate)

    async def input_text(self, params: dict[str, Any]) -> ActionResult:
        candidate = await self._locate(params)
        x, y = self._center(candidate)
        result = await self.environment.perform(
            "type",
            {"x": x, "y": y, "text": params["text"], "clear": bool(params.get("clear", False))},
        )
        self.resolver.invalidate()
        return self._with_target(result, candidate)

    async def scroll(self, params: dict[str, Any]) -> ActionResult:
        amount = params.get("amount", DEFAULT_SCROLL_PIXELS)
        delta_y = -amount if params.get("direction", "down") == "up" else amount
        result = await self.environment.perform("scroll", {"delta_y": delta_y})
        self.resolver.invalidate()
        return result

    async def wait(self, params: dict[str, Any]) -> ActionResult:
        return await self.environment.perform("wait", {"duration_ms": params["duration_ms"]})

    async def done(self, params: dict[str, Any]) -> dict[str, Any]:
        logger.info("task_marked_done", message=params.get("message", ""))
        return {"is_done": True, "message": params.get("message", "")}

    async def _locate(self, params: dict[str, Any]) -> Candidate:
        """Find the element an action targets.

        Raises:
            TargetNotFoundError: If nothing matches with enough confidence
        """
        index = params.get("index")
        if isinstance(index, int) and not isinstance(index, bool):
            candidates = await self.environment.list_candidates()
            for candidate in candidates:
                if candidate.index == index:
                    return candidate
            raise TargetNotFoundError(
                f"Element index {index} not found among {len(candidates)} candidates"
            )

        target = params["target"]
        context = None
        if params.get("url") or params.get("page_title"):
            context = ResolutionContext(url=params.get("url"), page_title=params.get("page_title"))

        resolution = await self.resolver.resolve_live(target, context)
        if resolution.best is None:
            logger.info(
                "target_unresolved",
                target=target,
                alternatives=[c.text_content for c in resolution.alternatives],
                reasoning=resolution.reasoning,
            )
            raise TargetNotFoundError(
                f"Element not found for '{target}': {resolution.reasoning}"
            )

        logger.info(
            "target_resolved",
            target=target,
            index=resolution.best.index,
            confidence=round(resolution.confidence, 3),
            strategy=resolution.strategy,
        )
        return resolution.best

    def _center(self, candidate: Candidate) -> tuple[int, int]:
        if candidate.geometry is None:
            raise TargetNotFoundError(f"Element {candidate.index} has no geometry")
        return candidate.geometry.center

    def _with_target(self, result: ActionResult, candidate: Candidate) -> ActionResult:
        metadata = {**result.metadata, "target_index": candidate.index}
        return result.model_copy(update={"metadata": metadata})
