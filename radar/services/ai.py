"""
AI remediation plans.
Multi-provider: Anthropic (Claude) and GitHub Models (OpenAI).
Async with retry and JSON extraction.
"""

import asyncio
import json
import logging
import re

import aiohttp

from radar.config import settings
from radar.services.metrics import format_metric_value, get_action_plan

logger = logging.getLogger(__name__)

TIMEOUT = aiohttp.ClientTimeout(total=120)

# Anthropic API version header
ANTHROPIC_VERSION = "2023-06-01"

PLAN_MAX_TOKENS = 1500
PLAN_TEMPERATURE = 0.2

DIFFICULTIES = ("Easy", "Medium", "Hard")

ACTION_PLAN_SYSTEM = """You are a senior web performance engineer.
Given Lighthouse results for one page, write a prioritized remediation plan
a small team can act on this week.

Respond with JSON only, in this shape:
{"items": [{"title": "...", "action": "...", "why": "...",
            "difficulty": "Easy|Medium|Hard", "stackTip": "... (optional)"}]}
Return at most 6 items, highest impact first."""


async def call_ai(system: str, prompt: str, retries: int = 2) -> str:
    """One system + user exchange with the configured provider, retried on failure."""
    token = settings.ai_auth_token
    if not token:
        env = "ANTHROPIC_API_KEY" if settings.ai_provider == "anthropic" else "AI_TOKEN"
        raise RuntimeError(f"{env} not set: cannot generate action plans")

    for attempt in range(retries + 1):
        try:
            return await _request(system, prompt, token)
        except Exception as err:
            if attempt == retries:
                raise
            wait = _backoff_secs(err, attempt)
            logger.warning("AI retry %d/%d in %ds: %s", attempt + 1, retries, wait, err)
            await asyncio.sleep(wait)


def _backoff_secs(err: Exception, attempt: int) -> int:
    msg = str(err).lower()
    if "429" in msg or "overloaded" in msg:
        return 20
    return 2 * (attempt + 1)


def _build_request(system: str, prompt: str, token: str) -> tuple[dict, dict]:
    """Headers and JSON payload in the provider's wire format."""
    user = {"role": "user", "content": prompt}
    if settings.ai_provider == "anthropic":
        headers = {"x-api-key": token, "anthropic-version": ANTHROPIC_VERSION}
        payload = {"system": system, "messages": [user]}
    else:
        headers = {"Authorization": f"Bearer {token}"}
        payload = {"messages": [{"role": "system", "content": system}, user]}
    payload.update(
        model=settings.ai_effective_model,
        max_tokens=PLAN_MAX_TOKENS,
        temperature=PLAN_TEMPERATURE,
    )
    return headers, payload


def _reply_text(data: dict) -> str:
    if settings.ai_provider == "anthropic":
        return "\n".join(b.get("text", "") for b in data.get("content", []) if b.get("type") == "text")
    choices = data.get("choices") or [{}]
    return choices[0].get("message", {}).get("content") or ""


async def _request(system: str, prompt: str, token: str) -> str:
    headers, payload = _build_request(system, prompt, token)
    async with aiohttp.ClientSession(timeout=TIMEOUT) as session:
        async with session.post(settings.ai_effective_url, json=payload, headers=headers) as resp:
            body = await resp.text()
            if resp.status != 200:
                raise RuntimeError(f"{settings.ai_provider} API HTTP {resp.status}: {body[:500]}")
    return strip_fences(_reply_text(json.loads(body)))


# ── Parsing helpers ─────────────────────────────────────────────


def strip_fences(text: str) -> str:
    """Remove markdown code fences."""
    text = re.sub(r"^```(?:json)?\s*\n?", "", text, flags=re.MULTILINE)
    text = re.sub(r"^```\s*$", "", text, flags=re.MULTILINE)
    return text.strip()


def extract_json(text: str) -> dict:
    """Extract a JSON object from an AI response."""
    cleaned = strip_fences(text)

    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        pass

    # Try outermost { ... }
    start = cleaned.find("{")
    end = cleaned.rfind("}")
    if start != -1 and end > start:
        try:
            return json.loads(cleaned[start : end + 1])
        except json.JSONDecodeError:
            pass

    raise ValueError(f"Could not extract JSON from AI response:\n{cleaned[:300]}…")


# ── Action plans ────────────────────────────────────────────────


def build_action_plan_prompt(url: str, strategy: str, audit: dict) -> str:
    lines = [f"Page: {url} ({strategy})", f"Performance score: {audit.get('perf_score')}/100", ""]
    for metric in ("lcp", "cls", "inp", "fcp", "ttfb", "tbt"):
        value = audit.get(metric)
        if value is not None:
            lines.append(f"- {metric.upper()}: {format_metric_value(metric, value)}")

    failing = get_action_plan(audit.get("lighthouse_raw"))
    if failing:
        lines += ["", "Failing Lighthouse audits:"]
        for item in failing:
            savings = f" (savings: {item['savings']})" if item.get("savings") else ""
            lines.append(f"- [{item['impact']}] {item['title']}{savings}")

    stack_packs = (audit.get("lighthouse_raw") or {}).get("stackPacks") or []
    if stack_packs:
        lines += ["", "Detected stack: " + ", ".join(p.get("title", "") for p in stack_packs)]
    return "\n".join(lines)


def _normalize_items(items: list) -> list[dict]:
    plan = []
    for raw in items:
        if not isinstance(raw, dict) or not raw.get("title") or not raw.get("action"):
            continue
        item = {
            "title": str(raw["title"]),
            "action": str(raw["action"]),
            "why": str(raw.get("why", "")),
            "difficulty": raw.get("difficulty") if raw.get("difficulty") in DIFFICULTIES else "Medium",
        }
        if raw.get("stackTip"):
            item["stackTip"] = str(raw["stackTip"])
        plan.append(item)
    return plan


async def generate_action_plan(url: str, strategy: str, audit: dict) -> list[dict]:
    """Ask the AI for a remediation plan. Raises on API or parse failure."""
    raw = await call_ai(ACTION_PLAN_SYSTEM, build_action_plan_prompt(url, strategy, audit))
    items = _normalize_items(extract_json(raw).get("items") or [])
    if not items:
        raise ValueError("AI returned an empty action plan")
    return items
