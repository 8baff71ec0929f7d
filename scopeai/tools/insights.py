"""Reporting, statistics and event tools."""

from __future__ import annotations

from typing import Any

from scopeai.models import AgentContext
from scopeai.storage.ledger import Ledger
from scopeai.tools.base import BaseTool, ToolResult, format_sek


class GetIncomeStatementTool(BaseTool):
    def __init__(self, ledger: Ledger) -> None:
        self._ledger = ledger

    @property
    def name(self) -> str:
        return "get_income_statement"

    @property
    def description(self) -> str:
        return "Resultaträkning: intäkter, kostnader och resultat, valfritt för en period."

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {"period": {"type": "string"}},
            "additionalProperties": False,
        }

    async def execute(self, context: AgentContext, **kwargs: Any) -> ToolResult:
        statement = self._ledger.for_company(context.company_id).income_statement(kwargs.get("period"))
        return ToolResult(
            success=True,
            output=(
                f"Intäkter {format_sek(statement['revenue'])}, kostnader "
                f"{format_sek(statement['expenses'])}, resultat {format_sek(statement['result'])}."
            ),
            data=statement,
        )


class GetCompanyStatsTool(BaseTool):
    def __init__(self, ledger: Ledger) -> None:
        self._ledger = ledger

    @property
    def name(self) -> str:
        return "get_company_stats"

    @property
    def description(self) -> str:
        return "Nyckeltal för företaget: kassa, resultat, obetalda fakturor och antal anställda."

    @property
    def parameters(self) -> dict[str, Any]:
        return {"type": "object", "properties": {}, "additionalProperties": False}

    async def execute(self, context: AgentContext, **kwargs: Any) -> ToolResult:
        books = self._ledger.for_company(context.company_id)
        books.refresh_overdue()
        statement = books.income_statement()
        unpaid = [i for i in books.invoices if i.status in ("sent", "overdue")]
        stats = {
            "cash": books.balance("1930"),
            "revenue": statement["revenue"],
            "result": statement["result"],
            "margin": round(statement["result"] / statement["revenue"], 3) if statement["revenue"] else None,
            "unpaid_invoices": len(unpaid),
            "overdue_invoices": sum(1 for i in unpaid if i.status == "overdue"),
            "unpaid_amount": round(sum(i.total for i in unpaid), 2),
            "employees": len(books.employees),
        }
        return ToolResult(
            success=True,
            output=f"Kassa {format_sek(stats['cash'])}, {stats['unpaid_invoices']} obetalda fakturor.",
            data=stats,
        )


class GetEventsTool(BaseTool):
    def __init__(self, ledger: Ledger) -> None:
        self._ledger = ledger

    @property
    def name(self) -> str:
        return "get_events"

    @property
    def description(self) -> str:
        return "Händelser i företagets tidslinje, t.ex. bolagsstämmor och styrelsebeslut."

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {"kind": {"type": "string"}, "limit": {"type": "integer", "minimum": 1}},
            "additionalProperties": False,
        }

    async def execute(self, context: AgentContext, **kwargs: Any) -> ToolResult:
        events = sorted(self._ledger.for_company(context.company_id).events, key=lambda e: e.date)
        if kwargs.get("kind"):
            events = [e for e in events if e.kind == kwargs["kind"]]
        events = events[-kwargs.get("limit", 20):]
        return ToolResult(
            success=True,
            output=f"{len(events)} händelser.",
            data={"events": [{"id": e.id, "date": e.date.isoformat(), "title": e.title, "kind": e.kind} for e in events]},
        )
