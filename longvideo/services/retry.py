"""
Retry / Fallback Engine.

Two layers wrap every upstream capability call:

1. Transient-fault retry against the same model: 429 / 5xx / timeout /
   network error is retried with exponential backoff (honoring Retry-After).
2. Capability fallback: once a model's retry budget is spent, or it rejects
   the request outright, the next model in the capability's fallback graph
   is tried with a freshly rotated credential and a fresh budget.

A chain of K models with a budget of R attempts therefore makes at most K x R
upstream calls before raising CapabilityExhaustedError.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, TypeVar

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)
from tenacity.wait import wait_base

from .credential_pool import CredentialPool, mask_key
from ..exceptions import (
    CapabilityExhaustedError,
    FallbackGraphError,
    TransientUpstreamError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]


# =============================================================================
# Capability catalogs
# =============================================================================

ANALYSIS = "analysis"
IMAGE = "image"
VIDEO = "video"
NARRATION = "narration"
MERGE = "merge"

# Strongest to weakest
LLM_RANKING = [
    "gpt-5.2",
    "claude-opus-4-5-20251101",
    "gpt-4o",
    "claude-3-5-sonnet-20241022",
    "gpt-4o-mini",
    "claude-3-opus-20240229",
    "gpt-4-turbo",
    "claude-3-sonnet-20240229",
    "gpt-3.5-turbo",
    "claude-3-haiku-20240307",
]

IMAGE_RANKING = [
    "gemini-3-pro-image-preview",
    "gpt-image-1.5-all",
    "midjourney",
    "ideogram",
    "flux-pro",
    "flux-schnell",
    "stable-diffusion",
    "doubao-image",
]

VIDEO_CHAIN = ["veo3.1-pro", "veo3.1-fast", "runway", "kling"]

NARRATION_CHAIN = ["tts-1-hd", "tts-1"]

MERGE_CHAIN = ["merge", "concat"]

DEFAULT_RANKINGS: Dict[str, List[str]] = {
    ANALYSIS: LLM_RANKING,
    IMAGE: IMAGE_RANKING,
    VIDEO: VIDEO_CHAIN,
    NARRATION: NARRATION_CHAIN,
    MERGE: MERGE_CHAIN,
}

OPENROUTER_URL = "https://openrouter.ai/api/v1/chat/completions"
OPENAI_URL = "https://api.openai.com/v1/chat/completions"


@dataclass(frozen=True)
class FallbackTarget:
    """One entry of a resolved fallback chain."""
    capability: str
    model: str
    provider: str = "vectorengine"
    endpoint: Optional[str] = None
    api_key: Optional[str] = None  # fixed key for backup providers

    @property
    def label(self) -> str:
        if self.provider == "vectorengine":
            return self.model
        return f"{self.provider}:{self.model}"


def backup_llm_targets(
    openrouter_api_key: Optional[str] = None,
    openai_api_key: Optional[str] = None,
) -> List[FallbackTarget]:
    """Backup analysis providers, appended after the pool chain when keyed."""
    targets = []
    if openrouter_api_key:
        for model in ("openai/gpt-4o-mini", "anthropic/claude-3-haiku"):
            targets.append(FallbackTarget(
                capability=ANALYSIS,
                model=model,
                provider="openrouter",
                endpoint=OPENROUTER_URL,
                api_key=openrouter_api_key,
            ))
    if openai_api_key:
        targets.append(FallbackTarget(
            capability=ANALYSIS,
            model="gpt-4o-mini",
            provider="openai",
            endpoint=OPENAI_URL,
            api_key=openai_api_key,
        ))
    return targets


# =============================================================================
# Transient-fault retry
# =============================================================================

@dataclass(frozen=True)
class RetryPolicy:
    """Per-model retry budget. max_retries counts attempts, including the first."""
    max_retries: int = 5
    base_delay: float = 3.0
    multiplier: float = 2.0
    max_delay: float = 30.0

    def __post_init__(self):
        if self.max_retries < 1:
            raise ValueError("max_retries must be at least 1")

    def wait(self) -> wait_base:
        """base_delay x multiplier^(n-1) capped at max_delay, unless the error carries Retry-After."""
        return wait_retry_after(
            wait_exponential(multiplier=self.base_delay, exp_base=self.multiplier, max=self.max_delay)
        )


def is_transient(error: BaseException) -> bool:
    if isinstance(error, TransientUpstreamError):
        return True
    if isinstance(error, (httpx.TimeoutException, httpx.NetworkError, asyncio.TimeoutError)):
        return True
    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        return status == 429 or status >= 500
    return False


def retry_after_of(error: BaseException) -> Optional[float]:
    if isinstance(error, TransientUpstreamError):
        return error.retry_after
    if isinstance(error, httpx.HTTPStatusError):
        return parse_retry_after(error.response.headers.get("Retry-After"))
    return None


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Retry-After in seconds; HTTP-date values are ignored."""
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


class wait_retry_after(wait_base):
    """Wait the upstream's Retry-After when the last error has one, else defer to `fallback`."""

    def __init__(self, fallback: wait_base):
        self.fallback = fallback

    def __call__(self, retry_state: RetryCallState) -> float:
        outcome = retry_state.outcome
        if outcome is not None and outcome.failed:
            retry_after = retry_after_of(outcome.exception())
            if retry_after is not None:
                return retry_after
        return self.fallback(retry_state)


async def retry_with_backoff(
    fn: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    sleep: Sleep = asyncio.sleep,
) -> T:
    """
    Run fn up to policy.max_retries times.

    Only transient errors are retried; anything else, and the last transient
    error once the budget is spent, propagates unchanged.
    """
    retrying = AsyncRetrying(
        stop=stop_after_attempt(policy.max_retries),
        wait=policy.wait(),
        retry=retry_if_exception(is_transient),
        sleep=sleep,
        reraise=True,
        before_sleep=before_sleep_log(logger, logging.WARNING),
    )
    return await retrying(fn)


# =============================================================================
# Fallback graph
# =============================================================================

class FallbackGraph:
    """
    Directed fallback edges per capability: model -> ordered successors.

    A chain is the start model followed by a walk of its successors that never
    revisits a model. validate() rejects edges to unknown models and cycles.
    """

    def __init__(self, edges: Dict[str, Dict[str, List[str]]]):
        self.edges = {cap: {m: list(nxt) for m, nxt in graph.items()} for cap, graph in edges.items()}

    @classmethod
    def from_rankings(cls, rankings: Dict[str, Sequence[str]]) -> "FallbackGraph":
        edges = {}
        for capability, ranking in rankings.items():
            ranking = list(ranking)
            edges[capability] = {
                model: ranking[i + 1:i + 2]
                for i, model in enumerate(ranking)
            }
        return cls(edges)

    @property
    def capabilities(self) -> List[str]:
        return list(self.edges)

    def models(self, capability: str) -> List[str]:
        return list(self.edges.get(capability, {}))

    def validate(self) -> None:
        for capability, graph in self.edges.items():
            if not graph:
                raise FallbackGraphError(f"Capability '{capability}' has no models")
            for model, successors in graph.items():
                for nxt in successors:
                    if nxt not in graph:
                        raise FallbackGraphError(
                            f"'{capability}' fallback {model} -> {nxt} references unknown model"
                        )
            self._check_acyclic(capability, graph)

    @staticmethod
    def _check_acyclic(capability: str, graph: Dict[str, List[str]]) -> None:
        visiting, done = set(), set()

        def visit(model: str, path: List[str]) -> None:
            if model in done:
                return
            if model in visiting:
                cycle = " -> ".join(path[path.index(model):] + [model])
                raise FallbackGraphError(f"'{capability}' fallback cycle: {cycle}")
            visiting.add(model)
            for nxt in graph.get(model, []):
                visit(nxt, path + [model])
            visiting.discard(model)
            done.add(model)

        for model in graph:
            visit(model, [])

    def chain(self, capability: str, start: Optional[str] = None) -> List[str]:
        """
        Ordered models to try.

        Without a start, the chain begins at the capability's first model.
        An unknown start model is tried first, then the full chain.
        """
        graph = self.edges.get(capability)
        if not graph:
            raise FallbackGraphError(f"Unknown capability: {capability}")

        roots = list(graph)
        order: List[str] = []
        if start and start not in graph:
            order.append(start)
            start = None
        stack = [start or roots[0]]

        while stack:
            model = stack.pop(0)
            if model in order:
                continue
            order.append(model)
            stack = [m for m in graph.get(model, []) if m not in order] + stack
        return order


# =============================================================================
# Engine
# =============================================================================

class FallbackEngine:
    """Applies retry and fallback to single-attempt capability calls."""

    def __init__(
        self,
        pool: CredentialPool,
        graph: Optional[FallbackGraph] = None,
        policy: Optional[RetryPolicy] = None,
        backup_targets: Optional[Sequence[FallbackTarget]] = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self.pool = pool
        self.graph = graph or FallbackGraph.from_rankings(DEFAULT_RANKINGS)
        self.graph.validate()
        self.policy = policy or RetryPolicy()
        self.backup_targets = list(backup_targets or [])
        self.sleep = sleep

    def targets(self, capability: str, start_model: Optional[str] = None) -> List[FallbackTarget]:
        targets = [
            FallbackTarget(capability=capability, model=model)
            for model in self.graph.chain(capability, start_model)
        ]
        targets.extend(t for t in self.backup_targets if t.capability == capability)
        return targets

    async def run(
        self,
        capability: str,
        call: Callable[[FallbackTarget, str], Awaitable[T]],
        start_model: Optional[str] = None,
        group_index: Optional[int] = None,
        image: bool = False,
    ) -> T:
        """
        Call `call(target, api_key)` down the fallback chain until one succeeds.

        Raises:
            CapabilityExhaustedError: every target failed; carries all attempted
                models and the last error
        """
        attempted: List[str] = []
        last_error: Optional[BaseException] = None

        for target in self.targets(capability, start_model):
            api_key = target.api_key or self.pool.next_key(group_index, image=image)
            attempted.append(target.label)
            logger.info(f"[RETRY] {capability}: trying {target.label} with key {mask_key(api_key)}")

            try:
                return await retry_with_backoff(
                    lambda: call(target, api_key),
                    self.policy,
                    sleep=self.sleep,
                )
            except Exception as e:
                last_error = e
                logger.warning(f"[RETRY] {capability}: {target.label} gave up ({type(e).__name__}: {e})")

        error = CapabilityExhaustedError(capability, attempted, last_error)
        logger.error(f"[RETRY] {error.message}")
        raise error
