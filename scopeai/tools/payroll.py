"""Payroll tools."""

from __future__ import annotations

import re
from typing import Any

from scopeai.models import AgentContext
from scopeai.storage.ledger import EMPLOYER_CONTRIBUTION_RATE, Ledger
from scopeai.tools.base import BaseTool, ToolResult, format_sek

_PERIOD_RE = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")


class GetEmployeesTool(BaseTool):
    def __init__(self, ledger: Ledger) -> None:
        self._ledger = ledger

    @property
    def name(self) -> str:
        return "get_employees"

    @property
    def description(self) -> str:
        return "Lista anställda och deras månadslöner."

    @property
    def parameters(self) -> dict[str, Any]:
        return {"type": "object", "properties": {}, "additionalProperties": False}

    async def execute(self, context: AgentContext, **kwargs: Any) -> ToolResult:
        employees = self._ledger.for_company(context.company_id).employees
        return ToolResult(
            success=True,
            output=f"{len(employees)} anställda.",
            data={
                "employees": [
                    {"id": e.id, "name": e.name, "monthly_salary": e.monthly_salary, "tax_rate": e.tax_rate}
                    for e in employees
                ]
            },
        )


class RunPayrollTool(BaseTool):
    def __init__(self, ledger: Ledger) -> None:
        self._ledger = ledger

    @property
    def name(self) -> str:
        return "run_payroll"

    @property
    def description(self) -> str:
        return "Kör lönen för en månad (YYYY-MM): skapar lönebesked och bokför lön och arbetsgivaravgifter."

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {"period": {"type": "string", "description": "Löneperiod (YYYY-MM)"}},
            "required": ["period"],
            "additionalProperties": False,
        }

    @property
    def mutating(self) -> bool:
        return True

    def summarize(self, args: dict[str, Any]) -> str:
        return f"Kör lön för {args['period']}"

    def warnings(self, args: dict[str, Any]) -> list[str]:
        return ["Lönebesked och bokföring skapas för samtliga anställda."]

    async def execute(self, context: AgentContext, **kwargs: Any) -> ToolResult:
        period = kwargs["period"]
        if not _PERIOD_RE.match(period):
            return ToolResult(success=False, error=f"Ogiltig period: {period}")
        books = self._ledger.for_company(context.company_id)
        if not books.employees:
            return ToolResult(success=False, error="Inga anställda att betala lön till.")
        try:
            slips = books.run_payroll(period)
        except ValueError as e:
            return ToolResult(success=False, error=str(e))
        gross = sum(s.gross for s in slips)
        return ToolResult(
            success=True,
            output=(
                f"Lön för {period} körd för {len(slips)} anställda. "
                f"Bruttolön {format_sek(gross)}, arbetsgivaravgifter "
                f"{format_sek(gross * EMPLOYER_CONTRIBUTION_RATE)}."
            ),
            data={"payslips": [{"id": s.id, "employee_id": s.employee_id, "net": s.net} for s in slips]},
        )
