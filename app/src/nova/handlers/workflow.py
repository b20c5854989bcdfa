"""
Workflow-build handler: hands the prompt to the mission builder service.

    POST {builder_url}/api/missions/build
    Idempotency-Key: mission-build:...
    {"prompt": ..., "deploy": true, "engine": "src"}

A resubmitted request with the same key never issues a second POST while
the first is pending, and replays the finished reply for a while after.
An upstream "still pending" answer (pending: true, 202, 409) is a
success with a notice, not an error.
Scheduling talk that never asked for a build gets an offer instead, and
nothing is posted.
"""

from __future__ import annotations

import logging
import re

import httpx

import nova.core.config as config_module
from nova.core.metrics import metrics
from nova.handlers.base import HandlerContext, SpecialHandler
from nova.handlers.idempotency import MissionBuildLedger, build_idempotency_key
from nova.turn.contracts import Lane, NovaError, RunSummary, Turn
from nova.turn.router import is_workflow_build, should_draft_only_workflow

logger = logging.getLogger(__name__)

PENDING_NOTICE = (
    "That workflow build is already in progress. I'll have it ready shortly; "
    "check the Missions page in a moment."
)
UNAUTHORIZED_REPLY = (
    "I could not build that workflow because your session is not authorized for missions yet. "
    "Re-open Nova, sign in again, then retry and I will continue from your latest prompt."
)
_UNAUTHORIZED = re.compile(r"\bunauthorized\b", re.I)
_TIME_HINT = re.compile(r"\b(?:at|around|by)\s+([01]?\d(?::[0-5]\d)?\s*(?:a\.?m\.?|p\.?m\.?)?)(?!\w)", re.I)
_CHANNEL_HINTS = (
    (re.compile(r"\btelegram\b", re.I), "Telegram"),
    (re.compile(r"\bdiscord\b", re.I), "Discord"),
    (re.compile(r"\b(novachat|chat)\b", re.I), "NovaChat"),
    (re.compile(r"\bemail\b", re.I), "Email"),
    (re.compile(r"\bwebhook\b", re.I), "Webhook"),
)


class WorkflowBuildError(NovaError):
    """The builder rejected the request or could not be reached."""


def format_build_reply(data: dict) -> str:
    workflow = data.get("workflow") or {}
    workflow_summary = workflow.get("summary") or {}
    schedule = workflow_summary.get("schedule") or {}

    label = workflow.get("label") or "Generated Workflow"
    provider = data.get("provider") or "LLM"
    model = data.get("model") or "default model"
    steps = workflow_summary.get("workflowSteps")
    step_count = len(steps) if isinstance(steps, list) else 0
    schedule_time = schedule.get("time") or "09:00"
    timezone = schedule.get("timezone") or "America/New_York"

    if data.get("deployed"):
        return (
            f'Built and deployed "{label}" with {step_count} workflow steps. '
            f"It is scheduled for {schedule_time} {timezone}. "
            f"Generated using {provider} {model}. Open the Missions page to review or edit it."
        )
    return (
        f'Built a workflow draft "{label}" with {step_count} steps. '
        f"It's ready for review and not deployed yet. "
        f"Generated using {provider} {model}. Open the Missions page to review or edit it."
    )


def format_error_reply(message: str) -> str:
    if _UNAUTHORIZED.search(message):
        return UNAUTHORIZED_REPLY
    return f"I couldn't build that workflow yet: {message}"


def format_confirm_reply(text: str) -> str:
    """Offer to build a mission from scheduling talk, echoing time and channel."""
    match = _TIME_HINT.search(text)
    at_time = re.sub(r"\s+", " ", match.group(1)).strip() if match else ""
    channel = next((name for pattern, name in _CHANNEL_HINTS if pattern.search(text)), "")
    details = (f" at {at_time}" if at_time else "") + (f" to {channel}" if channel else "")
    return (
        f"I can turn that into a mission{details}. "
        'If you want it, ask me to "create a mission" with those details and I will build it.'
    )


class WorkflowBuildHandler(SpecialHandler):
    lane = Lane.WORKFLOW_BUILD

    def __init__(self, ledger: MissionBuildLedger | None = None, client: httpx.AsyncClient | None = None):
        cfg = config_module.config.workflow
        self.ledger = ledger or MissionBuildLedger(cfg.pending_ttl_s, cfg.result_ttl_s)
        self._client = client

    async def handle(self, turn: Turn, ctx: HandlerContext) -> RunSummary:
        summary = RunSummary.for_lane(self.lane)
        if ctx.voice is not None:
            await ctx.voice.stop()

        if not is_workflow_build(turn.text):
            # Scheduling talk without a build request: offer, never POST.
            summary.reply = format_confirm_reply(turn.text)
            summary.route_reason = "confirm"
            metrics.inc("workflow.confirm_offered")
            logger.info(f"Offered a mission instead of building for {turn.session_key}")
            return summary.finish()

        deploy = not should_draft_only_workflow(turn.text)
        key = build_idempotency_key(turn.user_context_id, turn.conversation_id, deploy, turn.text)

        entry = self.ledger.lookup(key)
        if entry is not None:
            metrics.inc("workflow.deduplicated", labels={"state": entry.state})
            logger.info(f"Workflow build {key} already {entry.state}, not resubmitting")
            if entry.state == "pending":
                summary.reply = PENDING_NOTICE
                summary.route_reason = "pending"
            else:
                summary.reply = entry.reply
                summary.ok = entry.ok
                summary.route_reason = "replayed"
            return summary.finish()

        self.ledger.begin(key)
        try:
            status_code, data = await self._submit(turn, key, deploy)
        except (httpx.HTTPError, WorkflowBuildError) as e:
            self.ledger.release(key)
            message = str(e) or "Workflow build failed."
            logger.error(f"Workflow build failed: {message}")
            metrics.inc("workflow.failed")
            summary.fail(message)
            summary.reply = format_error_reply(message)
            return summary.finish()

        if data.get("pending") or status_code in (202, 409):
            # Leave the key pending; the builder finishes on its own.
            summary.reply = PENDING_NOTICE
            summary.route_reason = "pending"
            return summary.finish()

        summary.reply = format_build_reply(data)
        summary.provider = str(data.get("provider") or "")
        summary.model = str(data.get("model") or "")
        summary.route_reason = "deployed" if data.get("deployed") else "draft"
        self.ledger.complete(key, summary.reply)
        metrics.inc("workflow.built", labels={"deployed": str(bool(data.get("deployed"))).lower()})
        logger.info(f"Workflow built ({summary.route_reason}) for {turn.session_key}")
        return summary.finish()

    async def _submit(self, turn: Turn, key: str, deploy: bool) -> tuple[int, dict]:
        cfg = config_module.config.workflow
        headers = {"Content-Type": "application/json", "Idempotency-Key": key}
        token = str(turn.hints.get("access_token") or cfg.access_token).strip()
        if token:
            headers["Authorization"] = f"Bearer {token}"
        body = {"prompt": turn.text, "deploy": deploy, "engine": cfg.engine or "src"}
        url = f"{cfg.builder_url}/api/missions/build"

        if self._client is not None:
            resp = await self._client.post(url, json=body, headers=headers, timeout=cfg.timeout)
        else:
            async with httpx.AsyncClient(timeout=cfg.timeout) as client:
                resp = await client.post(url, json=body, headers=headers)

        try:
            data = resp.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}

        if resp.status_code in (202, 409) or data.get("pending"):
            return resp.status_code, data
        if resp.status_code >= 400 or not data.get("ok"):
            raise WorkflowBuildError(data.get("error") or f"Workflow build failed ({resp.status_code}).")
        return resp.status_code, data
