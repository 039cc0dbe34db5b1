# leadgrid/services/external/scoring_client.py
"""
OpenAI-backed lead scorer.

Scoring rules are plain text per industry, loaded from a JSON file
({"<industry>": "<rule>", "default": "<rule>"}). A lead whose industry has
no rule and no default is reported as unconfigured (None).
"""

import json
from pathlib import Path
from typing import Any

from openai import AsyncOpenAI

from leadgrid.config import settings
from leadgrid.infrastructure.observability.logging import get_logger
from leadgrid.models.domain.lead_domain import ScoreResult
from leadgrid.services.external.errors import PermanentError

logger = get_logger(__name__)

DEFAULT_RULE_KEY = "default"

SYSTEM_MESSAGE = """You rate B2B sales leads against the operator's rule.
Return ONLY a JSON object with the keys:
  "overall_rating": one short label (e.g. "A", "B", "C"),
  "suggestion": a one-sentence next step for sales,
  "reasoning": a short justification grounded in the lead data."""


def load_rules(path: str | None) -> dict[str, str]:
    if not path:
        return {}
    rules_file = Path(path)
    if not rules_file.exists():
        logger.warning("Scoring rules file not found", path=path)
        return {}
    raw = json.loads(rules_file.read_text(encoding="utf-8"))
    return {str(key).strip().casefold(): str(value) for key, value in raw.items() if value}


class OpenAIScorer:
    def __init__(
        self,
        rules: dict[str, str] | None = None,
        client: AsyncOpenAI | None = None,
        model: str | None = None,
    ):
        self.rules = rules if rules is not None else load_rules(settings.SCORING_RULES_PATH)
        self.model = model or settings.OPENAI_MODEL
        if client is None:
            if not settings.OPENAI_API_KEY:
                raise PermanentError("OPENAI_API_KEY not configured in settings", service="scorer")
            client = AsyncOpenAI(
                api_key=settings.OPENAI_API_KEY,
                timeout=settings.SCORING_TIMEOUT_SECONDS,
                max_retries=0,
            )
        self.client = client
        logger.info("OpenAI scorer initialized", model=self.model, rules=len(self.rules))

    def rule_for(self, industry: str | None) -> str | None:
        if industry:
            rule = self.rules.get(industry.strip().casefold())
            if rule:
                return rule
        return self.rules.get(DEFAULT_RULE_KEY)

    async def score(self, context: dict[str, Any]) -> ScoreResult | None:
        rule = self.rule_for(context.get("industry"))
        if rule is None:
            return None

        response = await self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": SYSTEM_MESSAGE},
                {
                    "role": "user",
                    "content": f"Rule:\n{rule}\n\nLead:\n{json.dumps(context, default=str)}",
                },
            ],
            temperature=0,
            response_format={"type": "json_object"},
        )

        if not response.choices or not response.choices[0].message.content:
            raise PermanentError("Empty response from OpenAI API", service="scorer")

        # Invalid JSON or a missing field raises pydantic.ValidationError: not retried.
        return ScoreResult.model_validate_json(response.choices[0].message.content.strip())
