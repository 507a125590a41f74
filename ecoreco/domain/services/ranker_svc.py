# ecoreco/domain/services/ranker_svc.py

from __future__ import annotations
from typing import List, Optional, Union
import asyncio
import logging
import re
from time import monotonic as _now

import httpx

from ecoreco.core.config import Settings
from ecoreco.domain.errors import (
    RankerError,
    RankerInsufficientConfidence,
    RankerMalformedResponse,
    RankerTimeout,
    RankerUnavailable,
)
from ecoreco.domain.models.product import Order, Product
from ecoreco.domain.services.constants import (
    MIN_RANKED_IDS,
    RANK_NUM_PREDICT,
    RANK_TEMPERATURE,
    WARMUP_NUM_PREDICT,
    WARMUP_TEMPERATURE,
)
from ecoreco.domain.services.prompts import (
    ID_SECTION_LABEL,
    WARMUP_PROMPT,
    order_prompt,
    product_prompt,
)

logger = logging.getLogger(__name__)

# =============================================================================
#                               RESPONSE PARSING
# =============================================================================

_ID_SECTION_RE = re.compile(re.escape(ID_SECTION_LABEL) + r"([^\n]+)", re.IGNORECASE)
# Integer ids, 24-hex ObjectIds and slug-like ids; anything outside the pool is dropped later
_ID_TOKEN_RE = re.compile(r"[A-Za-z0-9][A-Za-z0-9_-]*")


def _resolve(token: str, valid: set) -> Optional[str]:
    if token in valid:
        return token
    if token.lower() in valid:
        return token.lower()
    if token.isdigit() and str(int(token)) in valid:
        return str(int(token))
    return None


def parse_ranked_ids(text: str, candidate_ids: List[str]) -> List[str]:
    """
    Extract candidate ids from model text, in the order the model gave them.
    - Prefer the labeled section; otherwise scan the whole response.
    - Tokens that are not in the candidate pool are dropped (hallucinated ids).
    - Repeated ids keep their first position.
    Raises RankerMalformedResponse when the text holds no id-like token at all.
    """
    section = _ID_SECTION_RE.search(text)
    scope = section.group(1) if section else text
    tokens = _ID_TOKEN_RE.findall(scope)
    if not tokens:
        raise RankerMalformedResponse("no id tokens in model response")

    valid = set(candidate_ids)
    ranked: List[str] = []
    for tok in tokens:
        pid = _resolve(tok, valid)
        # Hyphenated token that is not itself an id: "12-45" names two ids
        parts = [pid] if pid is not None else [_resolve(t, valid) for t in tok.split("-")]
        for part in parts:
            if part is not None and part not in ranked:
                ranked.append(part)
    logger.debug("parsed tokens=%s valid=%s labeled=%s", tokens[:20], ranked, bool(section))
    return ranked


def _base_url(generate_url: str) -> str:
    return generate_url.replace("/api/generate", "").rstrip("/") or generate_url

# =============================================================================
#                               OLLAMA RANKER
# =============================================================================

class OllamaRanker:
    """
    Best-effort ranking of a candidate pool by an Ollama text-generation model.

    Never a hard dependency: `rank()` returns None on any failure and `warmup()`
    returns False, so callers can always drop to deterministic fallbacks.
    One outbound call per `rank()`, no retries.
    """

    def __init__(
        self,
        url: str,
        model: str,
        *,
        probe_timeout_s: float = 3.0,
        timeout_s: float = 15.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.url = url
        self.base_url = _base_url(url)
        self.model = model
        self.probe_timeout_s = probe_timeout_s
        self.timeout_s = timeout_s
        self._client = client or httpx.AsyncClient()

    @classmethod
    def from_settings(cls, settings: Settings, client: Optional[httpx.AsyncClient] = None) -> "OllamaRanker":
        return cls(
            settings.OLLAMA_URL,
            settings.OLLAMA_MODEL,
            probe_timeout_s=settings.ollama_probe_timeout_s,
            timeout_s=settings.ollama_timeout_s,
            client=client,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    # ----- Liveness ---------------------------------------------------------

    async def is_available(self) -> bool:
        """GET on the endpoint's base address; advisory only."""
        t0 = _now()
        try:
            resp = await asyncio.wait_for(self._client.get(self.base_url), timeout=self.probe_timeout_s)
        except asyncio.TimeoutError:
            logger.warning("ollama probe timeout url=%s after=%.1fs", self.base_url, self.probe_timeout_s)
            return False
        except httpx.HTTPError as e:
            logger.warning("ollama probe failed url=%s err=%s", self.base_url, e)
            return False
        logger.info("ollama probe url=%s status=%s duration=%.3fs", self.base_url, resp.status_code, _now() - t0)
        return resp.is_success

    # ----- Generation -------------------------------------------------------

    def _payload(self, prompt: str, *, temperature: float, num_predict: int) -> dict:
        return {
            "model": self.model,
            "prompt": prompt,
            "stream": False,
            "options": {"temperature": temperature, "num_predict": num_predict},
        }

    async def _generate(self, prompt: str) -> str:
        """
        One POST with a hard overall timeout; on expiry the request is cancelled.
        Returns the `response` text or raises a RankerError subclass.
        """
        payload = self._payload(prompt, temperature=RANK_TEMPERATURE, num_predict=RANK_NUM_PREDICT)
        t0 = _now()
        try:
            # httpx timeouts are per phase; wait_for bounds the whole exchange
            resp = await asyncio.wait_for(
                self._client.post(self.url, json=payload, timeout=None),
                timeout=self.timeout_s,
            )
        except asyncio.TimeoutError as e:
            raise RankerTimeout(f"no answer within {self.timeout_s:.0f}s") from e
        except httpx.HTTPError as e:
            raise RankerUnavailable(str(e)) from e

        logger.info("ollama generate model=%s status=%s duration=%.3fs", self.model, resp.status_code, _now() - t0)
        if not resp.is_success:
            raise RankerUnavailable(f"status {resp.status_code}")
        try:
            data = resp.json()
        except ValueError as e:
            raise RankerMalformedResponse(f"invalid JSON body: {e}") from e

        text = data.get("response") if isinstance(data, dict) else None
        if not isinstance(text, str) or not text.strip():
            raise RankerMalformedResponse("empty or missing `response` field")
        logger.debug("ollama raw response: %s", text[:500])
        return text

    def _prompt_for(self, context: Union[Product, Order], candidates: List[Product], limit: int, categories: Optional[List[str]]) -> str:
        if isinstance(context, Order):
            cats = categories
            if cats is None:
                cats = []
                for it in context.items:
                    for c in it.categories:
                        if c not in cats:
                            cats.append(c)
            return order_prompt(context, cats, candidates, limit)
        return product_prompt(context, candidates, limit)

    async def rank(
        self,
        context: Union[Product, Order],
        candidates: List[Product],
        limit: int,
        *,
        categories: Optional[List[str]] = None,
    ) -> Optional[List[str]]:
        """
        Ask the model to pick and order `limit` products from `candidates`.
        Returns candidate ids in model order, or None when ranking is not trustworthy:
        pool smaller than `limit`, timeout, transport/HTTP error, unparseable output,
        or fewer than min(2, limit) ids that belong to the pool.
        """
        if len(candidates) < limit:
            logger.info("rank skipped: pool=%s < limit=%s", len(candidates), limit)
            return None

        prompt = self._prompt_for(context, candidates, limit, categories)
        logger.debug("ollama prompt: %s", prompt)
        try:
            text = await self._generate(prompt)
            ranked = parse_ranked_ids(text, [p.id for p in candidates])
            if len(ranked) < min(MIN_RANKED_IDS, limit):
                raise RankerInsufficientConfidence(f"only {len(ranked)} valid ids")
        except RankerError as e:
            logger.warning("ollama ranking failed kind=%s err=%s", type(e).__name__, e)
            return None
        except Exception as e:
            logger.error("ollama ranking unexpected error: %s", e)
            return None

        logger.info("ollama ranking ok context=%s ids=%s", type(context).__name__.lower(), ranked)
        return ranked

    # ----- Warmup -----------------------------------------------------------

    async def warmup(self) -> bool:
        """
        Small generation request so the model is loaded before the first ranking.
        No timeout: loading a model can legitimately take minutes.
        Failures are logged and reported as False, never raised.
        """
        payload = self._payload(WARMUP_PROMPT, temperature=WARMUP_TEMPERATURE, num_predict=WARMUP_NUM_PREDICT)
        logger.info("ollama warmup start model=%s", self.model)
        t0 = _now()
        try:
            resp = await self._client.post(self.url, json=payload, timeout=None)
        except httpx.HTTPError as e:
            logger.warning("ollama warmup failed model=%s err=%s", self.model, e)
            return False
        ok = resp.is_success
        logger.info("ollama warmup done model=%s ok=%s duration=%.1fs", self.model, ok, _now() - t0)
        return ok
