"""Tests for schema validation, the tool registry, confirmations and the audit log."""

import asyncio
from typing import Any

import pytest

from scopeai.core.audit import AuditLog
from scopeai.core.confirmations import ConfirmationStore
from scopeai.errors import (
    ConfirmationAlreadyResolvedError,
    ConfirmationExpiredError,
    ConfirmationNotFoundError,
)
from scopeai.models import AgentContext, AgentToolResult, PendingConfirmation
from scopeai.storage.ledger import Ledger
from scopeai.storage.memory import InMemoryAuditRepository
from scopeai.tools import builtin_tools
from scopeai.tools.base import BaseTool, ToolResult
from scopeai.tools.registry import REJECTED_MESSAGE, ToolRegistry
from scopeai.tools.schema import validate_arguments


class EchoTool(BaseTool):
    @property
    def name(self) -> str:
        return "echo"

    @property
    def description(self) -> str:
        return "Echoes input"

    @property
    def parameters(self) -> dict:
        return {
            "type": "object",
            "properties": {"text": {"type": "string"}},
            "required": ["text"],
            "additionalProperties": False,
        }

    async def execute(self, context: AgentContext, **kwargs: Any) -> ToolResult:
        return ToolResult(success=True, output=kwargs["text"])


class CounterTool(BaseTool):
    """Mutating tool that counts its executions."""

    def __init__(self) -> None:
        self.runs = 0

    @property
    def name(self) -> str:
        return "bump"

    @property
    def description(self) -> str:
        return "Increments a counter"

    @property
    def parameters(self) -> dict:
        return {"type": "object", "properties": {"by": {"type": "integer", "minimum": 1}}}

    @property
    def mutating(self) -> bool:
        return True

    def summarize(self, args: dict[str, Any]) -> str:
        return f"Öka med {args.get('by', 1)}"

    async def execute(self, context: AgentContext, **kwargs: Any) -> ToolResult:
        await asyncio.sleep(0)
        self.runs += kwargs.get("by", 1)
        return ToolResult(success=True, output=f"Nu {self.runs}")


class BrokenTool(EchoTool):
    @property
    def name(self) -> str:
        return "broken"

    async def execute(self, context: AgentContext, **kwargs: Any) -> ToolResult:
        raise RuntimeError("disk full")


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def context():
    return AgentContext(user_id="u1", company_id="c1", conversation_id="conv1")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def registry(clock):
    reg = ToolRegistry(
        audit=AuditLog(InMemoryAuditRepository()),
        confirmations=ConfirmationStore(ttl_seconds=300, clock=clock),
    )
    reg.register_all([EchoTool(), CounterTool(), BrokenTool()])
    return reg


class TestSchema:
    def test_valid(self):
        schema = {"type": "object", "properties": {"n": {"type": "integer"}}, "required": ["n"]}
        assert validate_arguments(schema, {"n": 3}) == []

    def test_missing_required(self):
        errors = validate_arguments({"type": "object", "required": ["n"]}, {})
        assert errors == ["Missing required parameter: n"]

    def test_bool_is_not_a_number(self):
        errors = validate_arguments({"type": "number"}, True)
        assert errors and "expected number" in errors[0]

    def test_enum_and_bounds(self):
        schema = {
            "type": "object",
            "properties": {
                "status": {"type": "string", "enum": ["paid", "sent"]},
                "limit": {"type": "integer", "minimum": 1, "maximum": 10},
            },
        }
        errors = validate_arguments(schema, {"status": "lost", "limit": 50})
        assert len(errors) == 2

    def test_additional_properties(self):
        schema = {"type": "object", "properties": {}, "additionalProperties": False}
        assert validate_arguments(schema, {"x": 1}) == ["Unexpected parameter: x"]

    def test_nested_items(self):
        schema = {
            "type": "object",
            "properties": {
                "rows": {
                    "type": "array",
                    "items": {"type": "object", "required": ["account"]},
                },
            },
        }
        errors = validate_arguments(schema, {"rows": [{"account": "1930"}, {}]})
        assert errors == ["Missing required parameter: rows[1].account"]


class TestRegistry:
    def test_duplicate_registration_rejected(self, registry):
        with pytest.raises(ValueError):
            registry.register(EchoTool())

    def test_definitions_subset(self, registry):
        defs = registry.definitions(["echo", "missing"])
        assert [d.name for d in defs] == ["echo"]

    async def test_read_only_tool_runs(self, registry, context):
        result = await registry.execute("echo", '{"text": "hej"}', context, tool_call_id="c1")
        assert isinstance(result, AgentToolResult)
        assert result.success
        assert result.result == {"message": "hej"}
        assert result.tool_call_id == "c1"
        entries = await registry.audit.entries()
        assert [e.status for e in entries] == ["success"]

    async def test_unknown_tool(self, registry, context):
        result = await registry.execute("nope", {}, context)
        assert not result.success
        assert "Unknown tool" in result.error

    async def test_tool_outside_allowed_set(self, registry, context):
        result = await registry.execute("echo", {"text": "x"}, context, allowed=["bump"])
        assert not result.success

    async def test_invalid_json(self, registry, context):
        result = await registry.execute("echo", "{not json", context)
        assert not result.success
        assert "not valid JSON" in result.error
        entries = await registry.audit.entries()
        assert entries[0].status == "error"

    async def test_schema_violation(self, registry, context):
        result = await registry.execute("echo", {"text": 5}, context)
        assert not result.success
        assert "expected string" in result.error

    async def test_tool_exception_becomes_failed_result(self, registry, context):
        result = await registry.execute("broken", {"text": "x"}, context)
        assert not result.success
        assert result.error == "disk full"
        entries = await registry.audit.entries()
        assert entries[-1].status == "error"
        assert entries[-1].error_message == "disk full"

    async def test_every_builtin_tool_rejects_bad_arguments(self, context):
        registry = ToolRegistry()
        registry.register_all(builtin_tools(Ledger()))
        for name in registry.names():
            for bad in ('{"__bogus__": 1}', "[1, 2]"):
                result = await registry.execute(name, bad, context)
                assert isinstance(result, AgentToolResult), name
                assert result.success is False, name

    def test_injected_empty_state_is_kept(self):
        store = ConfirmationStore()
        repository = InMemoryAuditRepository()
        audit = AuditLog(repository)

        registry = ToolRegistry(audit=audit, confirmations=store)

        assert registry.confirmations is store
        assert registry.audit is audit

    async def test_audit_writes_to_injected_repository(self, context):
        repository = InMemoryAuditRepository()
        registry = ToolRegistry(audit=AuditLog(repository))
        registry.register(EchoTool())

        await registry.execute("echo", {"text": "hej"}, context)

        assert [e.tool_name for e in await repository.list()] == ["echo"]


class TestConfirmationGate:
    async def test_mutating_tool_returns_pending(self, registry, context):
        tool = registry.get("bump")
        outcome = await registry.execute("bump", {"by": 2}, context, tool_call_id="call_9")

        assert isinstance(outcome, PendingConfirmation)
        assert outcome.summary == "Öka med 2"
        assert outcome.tool_call_id == "call_9"
        assert tool.runs == 0
        entries = await registry.audit.entries()
        assert [e.status for e in entries] == ["pending"]

    async def test_approve_executes_once(self, registry, context):
        tool = registry.get("bump")
        pending = await registry.execute("bump", {"by": 1}, context)

        result = await registry.resolve(pending.confirmation_id, True, context)
        assert result.success
        assert tool.runs == 1

        with pytest.raises(ConfirmationAlreadyResolvedError):
            await registry.resolve(pending.confirmation_id, True, context)
        assert tool.runs == 1

    async def test_concurrent_approvals_execute_once(self, registry, context):
        tool = registry.get("bump")
        pending = await registry.execute("bump", {}, context)

        results = await asyncio.gather(
            registry.resolve(pending.confirmation_id, True, context),
            registry.resolve(pending.confirmation_id, True, context),
            return_exceptions=True,
        )

        assert tool.runs == 1
        assert sum(isinstance(r, AgentToolResult) for r in results) == 1
        assert sum(isinstance(r, ConfirmationAlreadyResolvedError) for r in results) == 1

    async def test_reject_leaves_audit_and_no_effect(self, registry, context):
        tool = registry.get("bump")
        pending = await registry.execute("bump", {"by": 5}, context)

        result = await registry.resolve(pending.confirmation_id, False, context)

        assert not result.success
        assert result.error == REJECTED_MESSAGE
        assert tool.runs == 0
        entries = await registry.audit.entries()
        assert [e.status for e in entries] == ["pending", "rejected"]
        assert entries[-1].confirmation_id == pending.confirmation_id

    async def test_expired_confirmation(self, registry, context, clock):
        tool = registry.get("bump")
        pending = await registry.execute("bump", {}, context)
        clock.now += 301

        with pytest.raises(ConfirmationExpiredError):
            await registry.resolve(pending.confirmation_id, True, context)

        assert tool.runs == 0
        entries = await registry.audit.entries()
        assert entries[-1].status == "error"

    async def test_purge_expired_audits(self, registry, context, clock):
        stale = await registry.execute("bump", {}, context)
        clock.now += 200
        fresh = await registry.execute("bump", {}, context)
        clock.now += 200

        purged = await registry.purge_expired()

        assert [c.confirmation_id for c in purged] == [stale.confirmation_id]
        entries = await registry.audit.entries()
        assert entries[-1].status == "error"
        assert entries[-1].confirmation_id == stale.confirmation_id
        with pytest.raises(ConfirmationNotFoundError):
            await registry.resolve(stale.confirmation_id, True, context)
        assert (await registry.resolve(fresh.confirmation_id, True, context)).success

    async def test_other_owner_cannot_resolve(self, registry, context):
        tool = registry.get("bump")
        pending = await registry.execute("bump", {}, context)

        for intruder in (
            AgentContext(user_id="mallory", company_id="c1"),
            AgentContext(user_id="u1", company_id="other"),
        ):
            with pytest.raises(ConfirmationNotFoundError):
                await registry.resolve(pending.confirmation_id, True, intruder)

        assert tool.runs == 0
        assert registry.confirmations.get(pending.confirmation_id) is not None
        assert (await registry.resolve(pending.confirmation_id, True, context)).success
        assert tool.runs == 1

    async def test_unknown_confirmation(self, registry):
        with pytest.raises(ConfirmationNotFoundError):
            await registry.resolve("does-not-exist", True)


class TestConfirmationStore:
    def test_pending_filters_expired_and_user(self, clock):
        store = ConfirmationStore(ttl_seconds=10, clock=clock)
        store.create("bump", {}, "a", user_id="u1")
        store.create("bump", {}, "b", user_id="u2")
        assert len(store.pending("u1")) == 1
        clock.now += 11
        assert store.pending() == []

    def test_purge_and_clear(self, clock):
        store = ConfirmationStore(ttl_seconds=10, clock=clock)
        store.create("bump", {}, "a", user_id="u1")
        clock.now += 20
        assert len(store.purge_expired()) == 1
        assert len(store) == 0
        store.create("bump", {}, "b", user_id="u1")
        store.clear()
        assert len(store) == 0

    async def test_already_resolved_is_a_not_found(self, clock):
        store = ConfirmationStore(clock=clock)
        c = store.create("bump", {}, "a", user_id="u1")
        await store.claim(c.confirmation_id)
        with pytest.raises(ConfirmationNotFoundError):
            await store.claim(c.confirmation_id)

    async def test_resolved_ids_forgotten_after_ttl(self, clock):
        store = ConfirmationStore(ttl_seconds=10, clock=clock)
        c = store.create("bump", {}, "a", user_id="u1")
        await store.claim(c.confirmation_id)
        store.purge_expired()
        with pytest.raises(ConfirmationAlreadyResolvedError):
            await store.claim(c.confirmation_id)

        clock.now += 11
        store.purge_expired()

        with pytest.raises(ConfirmationNotFoundError) as excinfo:
            await store.claim(c.confirmation_id)
        assert not isinstance(excinfo.value, ConfirmationAlreadyResolvedError)


class TestAuditLog:
    async def test_entries_filter_by_user(self):
        audit = AuditLog()
        await audit.record(tool_name="echo", parameters={}, status="success", user_id="u1")
        await audit.record(tool_name="echo", parameters={}, status="error", user_id="u2")
        entries = await audit.entries(user_id="u1")
        assert len(entries) == 1
        assert entries[0].user_id == "u1"
