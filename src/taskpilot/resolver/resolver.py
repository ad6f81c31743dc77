"""Target Resolver - Confidence-scored selection of candidate objects."""

import re
import time
from typing import Callable

import structlog

from taskpilot.core.config import Config
from taskpilot.core.interfaces import EnvironmentAdapter
from taskpilot.core.types import (
    Candidate,
    ResolutionContext,
    ResolutionResult,
    ScoredCandidate,
)


logger = structlog.get_logger()


# Signal weights; these decide which real-world selections succeed.
TEXT_WEIGHT = 0.3
TYPE_WEIGHT = 0.2
ATTRIBUTE_WEIGHT = 0.2
POSITION_WEIGHT = 0.15
CONTEXT_WEIGHT = 0.15

REJECT_THRESHOLD = 0.3
ACCEPT_THRESHOLD = 0.5
MAX_ALTERNATIVES = 5
FUZZY_CONFIDENCE_FACTOR = 0.8

KIND_KEYWORDS: dict[str, list[str]] = {
    "button": ["button", "btn", "click", "press"],
    "input": ["input", "type", "enter", "field", "text"],
    "a": ["link", "click", "go", "navigate"],
    "link": ["link", "click", "go", "navigate"],
    "select": ["select", "choose", "dropdown"],
    "textarea": ["textarea", "text", "area"],
}

_TOKEN_PATTERN = re.compile(r"[a-z0-9]+")


def tokenize(text: str) -> list[str]:
    """Lower-cased alphanumeric tokens longer than two characters."""
    return [token for token in _TOKEN_PATTERN.findall(text.lower()) if len(token) > 2]


def normalize(text: str) -> str:
    """Collapse whitespace and lower-case."""
    return " ".join(text.lower().split())


def text_relevance(text: str, description: str) -> float:
    """Exact 1.0, text contains description 0.8, description contains text 0.6.

    Otherwise the fraction of description tokens found in the text.
    """
    lowered_text = normalize(text)
    lowered_desc = normalize(description)
    if not lowered_text or not lowered_desc:
        return 0.0

    if lowered_text == lowered_desc:
        return 1.0
    if lowered_desc in lowered_text:
        return 0.8
    if lowered_text in lowered_desc:
        return 0.6

    desc_tokens = tokenize(lowered_desc)
    if not desc_tokens:
        return 0.0
    text_words = lowered_text.split()
    matched = sum(1 for token in desc_tokens if any(token in word for word in text_words))
    return matched / len(desc_tokens)


def fuzzy_text_relevance(candidate: Candidate, description: str) -> float:
    """Relaxed text match used by the fallback pass.

    Tokens match in either direction ("sub" matches "submit" and vice versa)
    and attribute values count as text.
    """
    desc_tokens = tokenize(description)
    if not desc_tokens:
        return 0.0

    haystack = " ".join([candidate.text_content, *candidate.attributes.values()])
    text_tokens = tokenize(haystack)
    if not text_tokens:
        return 0.0

    matched = sum(
        1
        for token in desc_tokens
        if any(token in other or other in token for other in text_tokens)
    )
    return matched / len(desc_tokens)


def type_relevance(candidate: Candidate, description: str) -> float:
    """Fraction of the candidate kind's keywords that appear in the description."""
    keywords = KIND_KEYWORDS.get(candidate.kind.lower(), [])
    if not keywords:
        return 0.0
    lowered = description.lower()
    return sum(1 for keyword in keywords if keyword in lowered) / len(keywords)


def attribute_relevance(candidate: Candidate, description: str) -> float:
    """Fraction of description tokens that appear in attribute keys or values."""
    desc_tokens = tokenize(description)
    if not desc_tokens or not candidate.attributes:
        return 0.0

    fields = [
        part.lower()
        for key, value in candidate.attributes.items()
        for part in (key, value)
        if part
    ]
    matched = sum(1 for token in desc_tokens if any(token in field for field in fields))
    return matched / len(desc_tokens)


def position_score(candidate: Candidate) -> float:
    score = 0.5
    if candidate.is_visible:
        score += 0.2
    if candidate.is_interactive:
        score += 0.2
    if candidate.depth > 10:
        score -= (candidate.depth - 10) * 0.02
    return max(0.0, min(1.0, score))


def url_relevance(description: str, url: str) -> float:
    """Domain mentioned in the description adds 0.5, path adds 0.3."""
    lowered_desc = description.lower()
    parts = url.lower().split("/")
    domain = parts[2] if len(parts) > 2 else ""
    path = "/".join(parts[3:])

    relevance = 0.0
    if domain and domain in lowered_desc:
        relevance += 0.5
    if path and path in lowered_desc:
        relevance += 0.3
    return min(1.0, relevance)


def context_relevance(description: str, context: ResolutionContext | None) -> float:
    if context is None:
        return 0.5

    relevance = 0.5
    if context.url:
        relevance += url_relevance(description, context.url) * 0.3
    if context.page_title:
        relevance += text_relevance(context.page_title, description) * 0.2
    return min(1.0, relevance)


class TargetResolver:
    """Ranks candidate objects against a natural-language description.

    Score = 0.3 text + 0.2 type + 0.2 attribute + 0.15 position + 0.15 context.
    Candidates scoring at or below 0.3 are rejected; the best is accepted
    only at 0.5 or above, otherwise ``best`` is None and the ranked
    candidates come back as alternatives for disambiguation.
    """

    def score(
        self,
        candidate: Candidate,
        description: str,
        context: ResolutionContext | None = None,
        fuzzy: bool = False,
    ) -> float:
        """Combined relevance score of one candidate.

        Args:
            candidate: Candidate object
            description: Natural language target description
            context: Optional page context
            fuzzy: Use relaxed text matching

        Returns:
            Score in [0, 1]
        """
        if fuzzy:
            text = max(
                text_relevance(candidate.text_content, description),
                fuzzy_text_relevance(candidate, description),
            )
        else:
            text = text_relevance(candidate.text_content, description)

        score = (
            text * TEXT_WEIGHT
            + type_relevance(candidate, description) * TYPE_WEIGHT
            + attribute_relevance(candidate, description) * ATTRIBUTE_WEIGHT
            + position_score(candidate) * POSITION_WEIGHT
            + context_relevance(description, context) * CONTEXT_WEIGHT
        )
        return min(1.0, score)

    def rank(
        self,
        description: str,
        candidates: list[Candidate],
        context: ResolutionContext | None = None,
        fuzzy: bool = False,
    ) -> list[ScoredCandidate]:
        """Score candidates, drop rejected ones, and sort best first.

        Ties keep the candidates' original order.
        """
        scored = [
            ScoredCandidate(
                candidate=candidate,
                score=self.score(candidate, description, context, fuzzy=fuzzy),
            )
            for candidate in candidates
        ]
        kept = [item for item in scored if item.score > REJECT_THRESHOLD]
        kept.sort(key=lambda item: item.score, reverse=True)
        return kept

    def resolve(
        self,
        description: str,
        candidates: list[Candidate],
        context: ResolutionContext | None = None,
    ) -> ResolutionResult:
        """Pick the candidate that best matches a description.

        Args:
            description: Natural language target description
            candidates: Candidate objects from the environment
            context: Optional page context (url, title)

        Returns:
            Resolution with best candidate (or None), confidence, and alternatives
        """
        if not candidates:
            return ResolutionResult(reasoning="No candidates available")

        ranked = self.rank(description, candidates, context)

        exact = self._exact_match(description, candidates)
        if exact is not None:
            alternatives = [
                item.candidate for item in ranked if item.candidate.index != exact.index
            ]
            logger.debug("target_resolved", strategy="exact", index=exact.index)
            return ResolutionResult(
                best=exact,
                confidence=1.0,
                alternatives=alternatives[:MAX_ALTERNATIVES],
                reasoning=f"Exact text match for '{description}'",
                strategy="exact",
            )

        strategy = "weighted"
        factor = 1.0
        if not ranked:
            # Fallback pass only on total rejection
            ranked = self.rank(description, candidates, context, fuzzy=True)
            strategy = "fuzzy"
            factor = FUZZY_CONFIDENCE_FACTOR
            if not ranked:
                logger.debug("target_rejected", description=description)
                return ResolutionResult(
                    reasoning=f"No candidate scored above {REJECT_THRESHOLD}",
                    strategy=strategy,
                )

        top = ranked[0]
        if top.score < ACCEPT_THRESHOLD:
            logger.debug(
                "target_ambiguous",
                description=description,
                top_score=round(top.score, 3),
                candidates=len(ranked),
            )
            return ResolutionResult(
                best=None,
                confidence=0.0,
                alternatives=[item.candidate for item in ranked[:MAX_ALTERNATIVES]],
                reasoning=(
                    f"Best candidate scored {top.score:.2f}, below {ACCEPT_THRESHOLD}; "
                    "disambiguation needed"
                ),
                strategy=strategy,
            )

        # Accepted on the raw score; the fuzzy factor only discounts the reported confidence.
        confidence = top.score * factor
        logger.debug(
            "target_resolved",
            strategy=strategy,
            index=top.candidate.index,
            confidence=round(confidence, 3),
        )
        return ResolutionResult(
            best=top.candidate,
            confidence=confidence,
            alternatives=[item.candidate for item in ranked[1 : MAX_ALTERNATIVES + 1]],
            reasoning=f"Selected with confidence {round(confidence * 100)}%",
            strategy=strategy,
        )

    def _exact_match(self, description: str, candidates: list[Candidate]) -> Candidate | None:
        target = normalize(description)
        if not target:
            return None
        matches = [
            candidate
            for candidate in candidates
            if candidate.is_visible and normalize(candidate.text_content) == target
        ]
        return matches[0] if len(matches) == 1 else None


class CandidateCache:
    """Short-lived snapshot of environment candidates, keyed by query."""

    def __init__(self, ttl: float = 5.0, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl = ttl
        self._clock = clock
        self._entries: dict[str | None, tuple[float, list[Candidate]]] = {}

    def get(self, query: str | None = None) -> list[Candidate] | None:
        """Cached candidates for a query, or None once the snapshot is stale."""
        entry = self._entries.get(query)
        if entry is None:
            return None
        stored_at, candidates = entry
        if self._clock() - stored_at >= self.ttl:
            del self._entries[query]
            return None
        return candidates

    def put(self, candidates: list[Candidate], query: str | None = None) -> None:
        self._entries[query] = (self._clock(), list(candidates))

    def invalidate(self) -> None:
        self._entries.clear()


class LiveTargetResolver(TargetResolver):
    """Target resolver that pulls candidates from an environment adapter."""

    def __init__(
        self,
        adapter: EnvironmentAdapter,
        config: Config | None = None,
        cache: CandidateCache | None = None,
    ) -> None:
        """Initialize the resolver.

        Args:
            adapter: Environment adapter that lists candidates
            config: Application configuration
            cache: Candidate cache; defaults to one with the configured TTL
        """
        self.adapter = adapter
        self.config = config or Config()
        self.cache = cache or CandidateCache(ttl=self.config.candidate_cache_ttl)

    async def resolve_live(
        self,
        description: str,
        context: ResolutionContext | None = None,
        query: str | None = None,
    ) -> ResolutionResult:
        """Resolve a description against the current environment.

        Args:
            description: Natural language target description
            context: Optional page context
            query: Optional filter forwarded to the adapter

        Returns:
            Resolution result
        """
        candidates = self.cache.get(query)
        if candidates is None:
            candidates = await self.adapter.list_candidates(query)
            self.cache.put(candidates, query)
            logger.debug("candidates_listed", count=len(candidates), query=query)
        return self.resolve(description, candidates, context)

    def invalidate(self) -> None:
        """Drop cached candidates, e.g. after an action mutated the page."""
        self.cache.invalidate()
