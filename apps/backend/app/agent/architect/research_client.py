from __future__ import annotations

import logging
import os
from functools import lru_cache
from typing import Any, Optional

import requests

from app.services.errors import ResearchProviderError

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.exa.ai"
TERMINAL_STATUSES = frozenset({"completed", "failed", "canceled", "cancelled"})

RESEARCH_OUTPUT_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "options": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "name": {"type": "string"},
                    "description": {"type": "string"},
                    "advantages": {"type": "array", "items": {"type": "string"}},
                    "disadvantages": {"type": "array", "items": {"type": "string"}},
                    "bestUseCases": {"type": "array", "items": {"type": "string"}},
                },
                "required": ["name", "description", "advantages", "disadvantages", "bestUseCases"],
            },
        },
        "recommendation": {"type": "string"},
        "reasoning": {"type": "string"},
    },
    "required": ["options", "recommendation", "reasoning"],
}


class ResearchClient:
    """Thin REST adapter for the deep-research provider's create/get task API."""

    def __init__(
        self,
        api_key: Optional[str],
        *,
        base_url: str = DEFAULT_BASE_URL,
        model: str = "exa-research",
        timeout: float = 15.0,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout = timeout

    def _headers(self) -> dict[str, str]:
        if not self.api_key:
            raise ResearchProviderError("EXA_API_KEY not configured")
        return {
            "x-api-key": self.api_key,
            "Content-Type": "application/json",
            "User-Agent": "ai-architect",
        }

    def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            resp = requests.request(method, url, headers=self._headers(), timeout=self.timeout, **kwargs)
        except requests.RequestException as exc:
            raise ResearchProviderError(f"Research request failed: {exc}") from exc
        if resp.status_code >= 400:
            logger.warning("Research provider error %s for %s %s", resp.status_code, method, path)
            raise ResearchProviderError(f"Research provider returned HTTP {resp.status_code}")
        try:
            data = resp.json()
        except ValueError as exc:
            raise ResearchProviderError("Research provider returned a non-JSON body") from exc
        if not isinstance(data, dict):
            raise ResearchProviderError("Research provider payload malformed")
        return data

    def create_task(self, instructions: str, output_schema: dict[str, Any] | None = None) -> str:
        payload = {
            "instructions": instructions,
            "model": self.model,
            "outputSchema": output_schema or RESEARCH_OUTPUT_SCHEMA,
        }
        data = self._request("POST", "/research/v1", json=payload)
        research_id = data.get("researchId") or data.get("id")
        if not research_id:
            raise ResearchProviderError("Research provider did not return a research id")
        return str(research_id)

    def get_task(self, research_id: str) -> dict[str, Any]:
        return self._request("GET", f"/research/v1/{research_id}")


def task_status(task: dict[str, Any]) -> str:
    return str(task.get("status") or "pending").lower()


def parsed_output(task: dict[str, Any]) -> Optional[dict[str, Any]]:
    output = task.get("output")
    if not isinstance(output, dict):
        return None
    parsed = output.get("parsed")
    return parsed if isinstance(parsed, dict) else None


@lru_cache(maxsize=1)
def get_research_client() -> ResearchClient:
    return ResearchClient(
        os.getenv("EXA_API_KEY"),
        base_url=os.getenv("EXA_BASE_URL", DEFAULT_BASE_URL),
        model=os.getenv("EXA_RESEARCH_MODEL", "exa-research"),
    )
