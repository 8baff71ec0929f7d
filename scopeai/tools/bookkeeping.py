"""Bookkeeping and receipt tools."""

from __future__ import annotations

from datetime import date
from typing import Any

from scopeai.models import AgentContext
from scopeai.storage.ledger import ACCOUNTS, Ledger, VerificationRow, in_period
from scopeai.tools.base import BaseTool, ToolResult, format_sek


def _parse_date(value: str | None) -> date | None:
    return date.fromisoformat(value) if value else None


class GetTransactionsTool(BaseTool):
    def __init__(self, ledger: Ledger) -> None:
        self._ledger = ledger

    @property
    def name(self) -> str:
        return "get_transactions"

    @property
    def description(self) -> str:
        return "Lista verifikationer i bokföringen, valfritt för en period (YYYY, YYYY-MM eller YYYY-Qn)."

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "period": {"type": "string", "description": "Period att visa"},
                "account": {"type": "string", "description": "Visa bara verifikationer som rör kontot"},
                "limit": {"type": "integer", "minimum": 1, "maximum": 200},
            },
            "additionalProperties": False,
        }

    async def execute(self, context: AgentContext, **kwargs: Any) -> ToolResult:
        books = self._ledger.for_company(context.company_id)
        found = books.verifications
        if kwargs.get("period"):
            found = [v for v in found if in_period(v.date, kwargs["period"])]
        if kwargs.get("account"):
            found = [v for v in found if any(r.account == kwargs["account"] for r in v.rows)]
        found = found[-kwargs.get("limit", 20):]
        return ToolResult(
            success=True,
            output=f"{len(found)} verifikationer.",
            data={
                "verifications": [
                    {
                        "id": v.id,
                        "date": v.date.isoformat(),
                        "description": v.description,
                        "rows": [{"account": r.account, "debit": r.debit, "credit": r.credit} for r in v.rows],
                    }
                    for v in found
                ]
            },
        )


class GetAccountsTool(BaseTool):
    def __init__(self, ledger: Ledger) -> None:
        self._ledger = ledger

    @property
    def name(self) -> str:
        return "get_accounts"

    @property
    def description(self) -> str:
        return "Visa kontoplanen med aktuella saldon."

    @property
    def parameters(self) -> dict[str, Any]:
        return {"type": "object", "properties": {}, "additionalProperties": False}

    async def execute(self, context: AgentContext, **kwargs: Any) -> ToolResult:
        books = self._ledger.for_company(context.company_id)
        accounts = [
            {"account": number, "name": name, "balance": books.balance(number)}
            for number, name in ACCOUNTS.items()
        ]
        return ToolResult(success=True, output=f"{len(accounts)} konton.", data={"accounts": accounts})


class CreateVerificationTool(BaseTool):
    def __init__(self, ledger: Ledger) -> None:
        self._ledger = ledger

    @property
    def name(self) -> str:
        return "create_verification"

    @property
    def description(self) -> str:
        return "Bokför en verifikation. Debet och kredit måste balansera. Kräver bekräftelse."

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "date": {"type": "string", "description": "Bokföringsdatum (YYYY-MM-DD)"},
                "description": {"type": "string"},
                "rows": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "account": {"type": "string", "enum": list(ACCOUNTS)},
                            "debit": {"type": "number", "minimum": 0},
                            "credit": {"type": "number", "minimum": 0},
                        },
                        "required": ["account"],
                        "additionalProperties": False,
                    },
                },
            },
            "required": ["description", "rows"],
            "additionalProperties": False,
        }

    @property
    def mutating(self) -> bool:
        return True

    def summarize(self, args: dict[str, Any]) -> str:
        total = sum(r.get("debit", 0) for r in args["rows"])
        return f"Bokför '{args['description']}' ({format_sek(total)})"

    def warnings(self, args: dict[str, Any]) -> list[str]:
        debit = sum(r.get("debit", 0) for r in args["rows"])
        credit = sum(r.get("credit", 0) for r in args["rows"])
        if round(debit - credit, 2) != 0:
            return [f"Debet ({format_sek(debit)}) och kredit ({format_sek(credit)}) balanserar inte."]
        return []

    async def execute(self, context: AgentContext, **kwargs: Any) -> ToolResult:
        books = self._ledger.for_company(context.company_id)
        rows = [VerificationRow(r["account"], r.get("debit", 0.0), r.get("credit", 0.0)) for r in kwargs["rows"]]
        try:
            verification = books.post(_parse_date(kwargs.get("date")) or date.today(), kwargs["description"], rows)
        except ValueError as e:
            return ToolResult(success=False, error=str(e))
        return ToolResult(
            success=True,
            output=f"Verifikation {verification.id} bokförd.",
            data={"verification_id": verification.id},
        )


class GetReceiptsTool(BaseTool):
    def __init__(self, ledger: Ledger) -> None:
        self._ledger = ledger

    @property
    def name(self) -> str:
        return "get_receipts"

    @property
    def description(self) -> str:
        return "Hämta registrerade kvitton, valfritt för en period."

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {"period": {"type": "string"}},
            "additionalProperties": False,
        }

    async def execute(self, context: AgentContext, **kwargs: Any) -> ToolResult:
        books = self._ledger.for_company(context.company_id)
        receipts = books.receipts
        if kwargs.get("period"):
            receipts = [r for r in receipts if in_period(r.date, kwargs["period"])]
        total = sum(r.amount + r.vat_amount for r in receipts)
        return ToolResult(
            success=True,
            output=f"{len(receipts)} kvitton på totalt {format_sek(total)}.",
            data={
                "receipts": [
                    {
                        "id": r.id,
                        "supplier": r.supplier,
                        "amount": r.amount,
                        "vat_amount": r.vat_amount,
                        "date": r.date.isoformat(),
                        "account": r.account,
                    }
                    for r in receipts
                ]
            },
        )


class CreateReceiptTool(BaseTool):
    def __init__(self, ledger: Ledger) -> None:
        self._ledger = ledger

    @property
    def name(self) -> str:
        return "create_receipt"

    @property
    def description(self) -> str:
        return "Registrera ett kvitto och bokför utgiften. Kräver bekräftelse."

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "supplier": {"type": "string", "description": "Leverantör"},
                "total": {"type": "number", "description": "Totalbelopp inklusive moms", "minimum": 0},
                "date": {"type": "string", "description": "Kvittots datum (YYYY-MM-DD)"},
                "account": {"type": "string", "enum": ["4010", "5410", "6110"], "description": "Kostnadskonto"},
            },
            "required": ["supplier", "total"],
            "additionalProperties": False,
        }

    @property
    def mutating(self) -> bool:
        return True

    def summarize(self, args: dict[str, Any]) -> str:
        return f"Registrera kvitto från {args['supplier']} på {format_sek(args['total'])}"

    async def execute(self, context: AgentContext, **kwargs: Any) -> ToolResult:
        try:
            day = _parse_date(kwargs.get("date"))
        except ValueError:
            return ToolResult(success=False, error=f"Ogiltigt datum: {kwargs.get('date')}")
        books = self._ledger.for_company(context.company_id)
        receipt = books.add_receipt(
            supplier=kwargs["supplier"],
            total=kwargs["total"],
            day=day,
            account=kwargs.get("account", "4010"),
        )
        return ToolResult(
            success=True,
            output=f"Kvitto från {receipt.supplier} bokfört ({format_sek(receipt.amount + receipt.vat_amount)}).",
            data={"receipt_id": receipt.id},
        )
