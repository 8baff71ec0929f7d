"""VAT and compliance tools."""

from __future__ import annotations

import re
from datetime import date
from typing import Any

from scopeai.models import AgentContext
from scopeai.storage.ledger import Ledger
from scopeai.tools.base import BaseTool, ToolResult, format_sek

_VAT_PERIOD_RE = re.compile(r"^\d{4}(-(0[1-9]|1[0-2])|-Q[1-4])?$")


def upcoming_deadlines(today: date, company_type: str) -> list[dict[str, str]]:
    """Recurring filing deadlines falling after ``today``."""
    year, month = (today.year, today.month + 1) if today.month < 12 else (today.year + 1, 1)
    deadlines = [
        {"date": date(year, month, 12).isoformat(), "title": "Arbetsgivardeklaration (AGI)", "authority": "Skatteverket"},
        {"date": date(year, month, 12).isoformat(), "title": "Momsdeklaration", "authority": "Skatteverket"},
    ]
    if company_type == "AB":
        deadlines.append({"date": date(today.year, 7, 1).isoformat(), "title": "Inkomstdeklaration 2", "authority": "Skatteverket"})
        deadlines.append({"date": date(today.year, 7, 31).isoformat(), "title": "Årsredovisning", "authority": "Bolagsverket"})
    else:
        deadlines.append({"date": date(today.year, 5, 2).isoformat(), "title": "Inkomstdeklaration 1 (NE)", "authority": "Skatteverket"})
    upcoming = [d for d in deadlines if d["date"] > today.isoformat()]
    return sorted(upcoming, key=lambda d: d["date"])


class GetVatReportTool(BaseTool):
    def __init__(self, ledger: Ledger) -> None:
        self._ledger = ledger

    @property
    def name(self) -> str:
        return "get_vat_report"

    @property
    def description(self) -> str:
        return "Sammanställ utgående och ingående moms för en period (YYYY-MM, YYYY-Qn eller YYYY)."

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {"period": {"type": "string"}},
            "required": ["period"],
            "additionalProperties": False,
        }

    async def execute(self, context: AgentContext, **kwargs: Any) -> ToolResult:
        period = kwargs["period"]
        if not _VAT_PERIOD_RE.match(period):
            return ToolResult(success=False, error=f"Ogiltig period: {period}")
        books = self._ledger.for_company(context.company_id)
        report = books.vat_report(period)
        report_data: dict[str, Any] = {"period": period, **report, "submitted": period in books.vat_submissions}
        return ToolResult(
            success=True,
            output=f"Moms att betala för {period}: {format_sek(report['vat_to_pay'])}.",
            data=report_data,
        )


class SubmitVatDeclarationTool(BaseTool):
    def __init__(self, ledger: Ledger) -> None:
        self._ledger = ledger

    @property
    def name(self) -> str:
        return "submit_vat_declaration"

    @property
    def description(self) -> str:
        return "Skicka in momsdeklarationen för en period till Skatteverket. Kräver bekräftelse."

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {"period": {"type": "string"}},
            "required": ["period"],
            "additionalProperties": False,
        }

    @property
    def mutating(self) -> bool:
        return True

    def summarize(self, args: dict[str, Any]) -> str:
        return f"Skicka momsdeklaration för {args['period']}"

    def warnings(self, args: dict[str, Any]) -> list[str]:
        return ["En inskickad deklaration kan bara ändras genom en rättelse."]

    async def execute(self, context: AgentContext, **kwargs: Any) -> ToolResult:
        period = kwargs["period"]
        if not _VAT_PERIOD_RE.match(period):
            return ToolResult(success=False, error=f"Ogiltig period: {period}")
        books = self._ledger.for_company(context.company_id)
        if period in books.vat_submissions:
            return ToolResult(success=False, error=f"Momsdeklarationen för {period} är redan inskickad.")
        report = books.vat_report(period)
        books.vat_submissions[period] = report["vat_to_pay"]
        return ToolResult(
            success=True,
            output=f"Momsdeklaration för {period} inskickad. Att betala: {format_sek(report['vat_to_pay'])}.",
            data={"period": period, **report},
        )


class GetDeadlinesTool(BaseTool):
    @property
    def name(self) -> str:
        return "get_deadlines"

    @property
    def description(self) -> str:
        return "Visa kommande deadlines för deklarationer och inlämningar."

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {"from_date": {"type": "string", "description": "Räkna från datum (YYYY-MM-DD)"}},
            "additionalProperties": False,
        }

    async def execute(self, context: AgentContext, **kwargs: Any) -> ToolResult:
        try:
            today = date.fromisoformat(kwargs["from_date"]) if kwargs.get("from_date") else date.today()
        except ValueError:
            return ToolResult(success=False, error=f"Ogiltigt datum: {kwargs['from_date']}")
        deadlines = upcoming_deadlines(today, context.company_type)
        return ToolResult(
            success=True,
            output=f"{len(deadlines)} kommande deadlines.",
            data={"deadlines": deadlines},
        )
