"""Tests for the audit and conversation repositories."""

import pytest

from scopeai.core.audit import AuditLog
from scopeai.storage import (
    InMemoryAuditRepository,
    InMemoryConversationRepository,
    SqliteAuditRepository,
    SqliteConversationRepository,
)


@pytest.fixture(params=["memory", "sqlite"])
async def conversations(request, tmp_path):
    if request.param == "memory":
        yield InMemoryConversationRepository()
        return
    repo = SqliteConversationRepository(tmp_path / "data" / "scopeai.db")
    await repo.start()
    yield repo
    await repo.stop()


@pytest.fixture(params=["memory", "sqlite"])
async def audit_repo(request, tmp_path):
    if request.param == "memory":
        yield InMemoryAuditRepository()
        return
    repo = SqliteAuditRepository(tmp_path / "audit.db")
    await repo.start()
    yield repo
    await repo.stop()


class TestConversations:
    async def test_create_and_get(self, conversations):
        created = await conversations.create("u1", title="Moms", conversation_id="conv1")
        found = await conversations.get_by_id("conv1")
        assert found is not None
        assert found.id == created.id == "conv1"
        assert found.title == "Moms"
        assert await conversations.get_by_id("missing") is None

    async def test_generated_id(self, conversations):
        created = await conversations.create("u1")
        assert created.id
        assert (await conversations.get_by_id(created.id)).user_id == "u1"

    async def test_messages_in_order(self, conversations):
        await conversations.create("u1", conversation_id="conv1")
        for i in range(5):
            await conversations.add_message("conv1", "user" if i % 2 == 0 else "assistant", f"m{i}")

        stored = await conversations.messages("conv1")
        assert [m.content for m in stored] == ["m0", "m1", "m2", "m3", "m4"]

        newest = await conversations.messages("conv1", limit=2)
        assert [m.content for m in newest] == ["m3", "m4"]

    async def test_metadata_round_trip(self, conversations):
        await conversations.create("u1", conversation_id="conv1")
        await conversations.add_message("conv1", "assistant", "svar", metadata={"agent": "skatt", "success": True})
        stored = await conversations.messages("conv1")
        assert stored[0].metadata == {"agent": "skatt", "success": True}

    async def test_message_to_unknown_conversation(self, conversations):
        with pytest.raises(KeyError):
            await conversations.add_message("ghost", "user", "hej")

    async def test_list_by_user(self, conversations):
        await conversations.create("u1", conversation_id="a")
        await conversations.create("u2", conversation_id="b")
        await conversations.create("u1", conversation_id="c")
        await conversations.add_message("a", "user", "senast")

        listed = await conversations.list("u1")
        assert [c.id for c in listed] == ["a", "c"]


class TestAuditRepositories:
    async def test_append_and_list(self, audit_repo):
        audit = AuditLog(audit_repo)
        await audit.record(
            tool_name="create_invoice",
            parameters={"customer": "Acme", "amount": 1000},
            status="pending",
            user_id="u1",
            confirmation_id="cf1",
            company_id="c1",
        )
        await audit.record(
            tool_name="create_invoice",
            parameters={"customer": "Acme", "amount": 1000},
            status="success",
            user_id="u1",
            result={"message": "Faktura skapad"},
            execution_time_ms=12,
            confirmation_id="cf1",
        )
        await audit.record(tool_name="get_accounts", parameters={}, status="error", user_id="u2", error_message="x")

        entries = await audit.entries(user_id="u1")
        assert [e.status for e in entries] == ["pending", "success"]
        assert entries[0].parameters == {"customer": "Acme", "amount": 1000}
        assert entries[0].company_id == "c1"
        assert entries[1].result == {"message": "Faktura skapad"}
        assert entries[1].execution_time_ms == 12

        everything = await audit.entries()
        assert len(everything) == 3
        assert everything[-1].error_message == "x"

    async def test_limit_keeps_newest(self, audit_repo):
        audit = AuditLog(audit_repo)
        for i in range(4):
            await audit.record(tool_name=f"t{i}", parameters={}, status="success", user_id="u1")
        entries = await audit.entries(limit=2)
        assert [e.tool_name for e in entries] == ["t2", "t3"]
