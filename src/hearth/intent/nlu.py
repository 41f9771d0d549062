"""
NLU client — HTTP wrapper around the external intent/entity service.

POST {base_url}/analyze
    {"text": "...", "language": "ko", "context": {"recent_topics": [...]}}
→   {"intent": "weather.query", "confidence": 0.95, "entities": {...}}

Any failure (timeout, transport error, non-2xx, malformed body) raises
NLUError. A well-formed response with no intent is NOT a failure: it
comes back as an NLUResult with ``intent_name=None``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

from hearth.core.errors import NLUError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NLUResult:
    intent_name: str | None
    confidence: float
    entities: dict[str, Any] = field(default_factory=dict)


class NLUClient:
    """Bounded-timeout client for the NLU collaborator."""

    def __init__(
        self,
        base_url: str,
        *,
        api_key: str = "",
        timeout: float = 2.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._url = f"{base_url.rstrip('/')}/analyze"
        self._api_key = api_key
        self._timeout = timeout
        self._client = client

    async def analyze(
        self, text: str, language_code: str, context_hints: dict[str, Any]
    ) -> NLUResult:
        body = {"text": text, "language": language_code, "context": context_hints}
        headers = {"Authorization": f"Bearer {self._api_key}"} if self._api_key else {}

        try:
            if self._client is not None:
                resp = await self._client.post(
                    self._url, json=body, headers=headers, timeout=self._timeout
                )
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    resp = await client.post(self._url, json=body, headers=headers)
            resp.raise_for_status()
            data = resp.json()
        except httpx.TimeoutException as e:
            raise NLUError(f"NLU timed out after {self._timeout}s") from e
        except httpx.HTTPStatusError as e:
            raise NLUError(f"NLU returned {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise NLUError(f"NLU transport error: {e}") from e
        except ValueError as e:
            raise NLUError(f"NLU returned invalid JSON: {e}") from e

        return _parse(data)


def _parse(data: Any) -> NLUResult:
    if not isinstance(data, dict):
        raise NLUError(f"NLU response is not an object: {type(data).__name__}")

    name = data.get("intent")
    if name is not None and (not isinstance(name, str) or not name.strip()):
        raise NLUError(f"NLU intent has invalid value: {name!r}")

    try:
        confidence = float(data.get("confidence", 0.0))
    except (TypeError, ValueError) as e:
        raise NLUError(f"NLU confidence is not a number: {data.get('confidence')!r}") from e

    entities = data.get("entities") or {}
    if isinstance(entities, list):
        # [{"entity": "location", "value": "서울"}, ...]
        try:
            entities = {e["entity"]: e["value"] for e in entities}
        except (KeyError, TypeError) as e:
            raise NLUError("NLU entities list is malformed") from e
    if not isinstance(entities, dict):
        raise NLUError("NLU entities must be an object or list")

    return NLUResult(
        intent_name=name.strip() if name else None,
        confidence=confidence,
        entities=entities,
    )
