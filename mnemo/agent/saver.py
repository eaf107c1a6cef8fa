"""Per-turn memory saver: let the model decide what to add, update or delete.

After each turn the recent conversation, store statistics and the memories
closest to the latest user message are sent to the model, which answers
with a JSON batch of operations. The batch is validated as a whole before
anything touches the store:

- unparseable or invalid output → the step is skipped, nothing applied
- more than saver_max_operations → the extras are dropped
- a stale id on update/delete → logged and ignored, other operations continue

Nothing here raises to the orchestrator.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog
from pydantic import ValidationError

from mnemo.infra.errors import (
    ExtractionParseError,
    MemoryNotFoundError,
    MemoryStoreError,
    PortUnavailable,
)
from mnemo.memory.contracts import MemoryOperation, OperationBatch

if TYPE_CHECKING:
    from mnemo.agent.model_client import ModelClient
    from mnemo.config.settings import MemorySettings
    from mnemo.memory.dedup import DedupMergePolicy
    from mnemo.memory.models import MemoryRecord, MemoryStats
    from mnemo.memory.retrieval import RetrievalEngine
    from mnemo.memory.store import MemoryStore
    from mnemo.session.conversation import ConversationMessage

logger = structlog.get_logger()

_SAVER_PROMPT = """\
You are a memory manager for an AI assistant. Read the recent conversation \
and decide whether the long-term memory store needs to change.

Worth remembering:
- fact: names, occupations, project details and other facts about the user
- preference: likes, dislikes, habits, preferred style
- decision: decisions or conclusions reached
- todo: plans and open items
- lesson: lessons learned, technical takeaways

Rules:
- If an existing memory covers the information but is outdated or incomplete, \
"update" it by id instead of adding a duplicate.
- If an existing memory is now simply wrong, "delete" it by id.
- If the existing memories are already accurate, do nothing.
- Each memory must be self-contained and understandable without the conversation.
- At most {max_operations} operations per turn.
- importance is an integer from 1 (trivia) to 10 (critical).

Answer with JSON only, in exactly this shape:
{{"operations": [{{"operation": "add" | "update" | "delete", "id": "<id for update/delete>", \
"text": "<memory text>", "category": "fact", "importance": 5, "keywords": ["..."]}}]}}
Return {{"operations": []}} when nothing should change.
"""


@dataclass
class SaveReport:
    """Outcome of one saver step, for logs and tests."""

    added: int = 0
    merged: int = 0
    updated: int = 0
    deleted: int = 0
    not_found: int = 0
    failed: int = 0
    dropped: int = 0
    skipped: bool = False
    reason: str = ""

    @property
    def applied(self) -> int:
        return self.added + self.merged + self.updated + self.deleted


def _extract_json(text: str) -> str:
    """Strip markdown fences around a JSON object, if any."""
    stripped = text.strip()
    if "```" not in stripped:
        return stripped
    start = stripped.find("{")
    end = stripped.rfind("}") + 1
    if start < 0 or end <= start:
        raise ExtractionParseError("No JSON object inside markdown fence")
    return stripped[start:end]


def parse_operations(text: str) -> list[MemoryOperation]:
    """Parse and validate the model's answer. All-or-nothing.

    Raises ExtractionParseError on malformed JSON or any invalid operation.
    """
    if not text or not text.strip():
        raise ExtractionParseError("Empty extraction output")
    try:
        data = json.loads(_extract_json(text))
    except json.JSONDecodeError as e:
        raise ExtractionParseError(f"Invalid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ExtractionParseError(f"Expected JSON object, got {type(data).__name__}")
    try:
        batch = OperationBatch.model_validate(data)
    except ValidationError as e:
        raise ExtractionParseError(f"Invalid operations: {e.error_count()} error(s)") from e
    return batch.operations


def _format_transcript(messages: list[ConversationMessage]) -> str:
    return "\n".join(f"[{m.role}]: {m.content}" for m in messages)


def _format_existing(records: list[MemoryRecord]) -> str:
    if not records:
        return "(no related memories)"
    return "\n".join(
        f"- id={r.id} [{r.category}] (importance {r.importance}) {r.text}"
        for r in records
    )


def _format_stats(stats: MemoryStats) -> str:
    if not stats.total_count:
        return "0 records"
    categories = ", ".join(f"{name}: {n}" for name, n in sorted(stats.by_category.items()))
    return f"{stats.total_count} records ({categories})"


class MemorySaver:
    def __init__(
        self,
        model_client: ModelClient,
        store: MemoryStore,
        policy: DedupMergePolicy,
        settings: MemorySettings,
        model: str,
        retrieval: RetrievalEngine | None = None,
    ) -> None:
        self._model_client = model_client
        self._store = store
        self._policy = policy
        self._settings = settings
        self._model = settings.saver_model or model
        self._retrieval = retrieval

    async def save(
        self,
        recent: list[ConversationMessage],
        *,
        session_id: str = "",
    ) -> SaveReport:
        """Run one extraction step over ``recent`` (window messages, oldest first)."""
        recent = recent[-self._settings.saver_recent_messages:]
        if not recent:
            return SaveReport(skipped=True, reason="no_messages")

        messages = [
            {
                "role": "system",
                "content": _SAVER_PROMPT.format(
                    max_operations=self._settings.saver_max_operations
                ),
            },
            {"role": "user", "content": await self._build_input(recent)},
        ]

        try:
            raw = await self._model_client.chat(
                messages, self._model, temperature=self._settings.saver_temperature
            )
        except Exception as e:
            logger.warning("memory_saver_model_failed", session_id=session_id, error=str(e))
            return SaveReport(skipped=True, reason="model_failed")

        try:
            operations = parse_operations(raw)
        except ExtractionParseError as e:
            logger.warning(
                "memory_saver_parse_failed",
                session_id=session_id,
                error=str(e),
                output=raw[:200],
            )
            return SaveReport(skipped=True, reason="parse_failed")

        report = SaveReport()
        limit = self._settings.saver_max_operations
        if len(operations) > limit:
            report.dropped = len(operations) - limit
            logger.warning(
                "memory_saver_operations_capped",
                session_id=session_id,
                received=len(operations),
                limit=limit,
            )
            operations = operations[:limit]

        for op in operations:
            await self._apply(op, report, session_id)

        logger.info(
            "memory_saver_done",
            session_id=session_id,
            added=report.added,
            merged=report.merged,
            updated=report.updated,
            deleted=report.deleted,
            not_found=report.not_found,
            failed=report.failed,
        )
        return report

    async def _build_input(self, recent: list[ConversationMessage]) -> str:
        latest_user = next((m.content for m in reversed(recent) if m.role == "user"), "")
        related: list[MemoryRecord] | None = None
        if self._retrieval is not None and latest_user:
            try:
                related = [r.record for r in await self._retrieval.retrieve(latest_user)]
            except PortUnavailable as e:
                logger.warning("memory_saver_context_unavailable", error=str(e))
        if related is None:
            # No semantic context; show the newest records so ids are still available
            related = self._store.recent(self._settings.recall_max_results)

        return (
            f"## Memory store: {_format_stats(self._store.stats())}\n\n"
            f"## Related existing memories\n{_format_existing(related)}\n\n"
            f"## Recent conversation\n{_format_transcript(recent)}"
        )

    async def _apply(self, op: MemoryOperation, report: SaveReport, session_id: str) -> None:
        try:
            if op.operation == "add":
                outcome = await self._policy.save(
                    op.text or "",
                    category=op.category,
                    importance=op.importance,
                    keywords=op.keywords,
                )
                if outcome.action == "merged":
                    report.merged += 1
                else:
                    report.added += 1
            elif op.operation == "update":
                await self._store.update(
                    op.id or "",
                    op.text or "",
                    category=op.category,
                    importance=op.importance,
                    keywords=op.keywords,
                )
                report.updated += 1
            else:
                await self._store.delete(op.id or "")
                report.deleted += 1
        except MemoryNotFoundError as e:
            report.not_found += 1
            logger.warning(
                "memory_saver_stale_id",
                session_id=session_id,
                operation=op.operation,
                record_id=e.record_id,
            )
        except (PortUnavailable, MemoryStoreError) as e:
            report.failed += 1
            logger.warning(
                "memory_saver_operation_failed",
                session_id=session_id,
                operation=op.operation,
                error=str(e),
                code=e.code,
            )
