"""Customer invoice tools."""

from __future__ import annotations

from dataclasses import asdict
from datetime import date
from typing import Any

from scopeai.models import AgentContext
from scopeai.storage.ledger import Ledger
from scopeai.tools.base import BaseTool, ToolResult, format_sek
from scopeai.utils.logging import get_logger

log = get_logger(__name__)


def _invoice_data(invoice: Any) -> dict[str, Any]:
    data = asdict(invoice)
    data["total"] = invoice.total
    data["issue_date"] = invoice.issue_date.isoformat()
    data["due_date"] = invoice.due_date.isoformat()
    return data


class GetCustomerInvoicesTool(BaseTool):
    def __init__(self, ledger: Ledger) -> None:
        self._ledger = ledger

    @property
    def name(self) -> str:
        return "get_customer_invoices"

    @property
    def description(self) -> str:
        return "Hämta kundfakturor. Kan filtreras på status eller kund."

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "limit": {"type": "integer", "description": "Max antal fakturor (standard: 10)", "minimum": 1, "maximum": 100},
                "status": {
                    "type": "string",
                    "enum": ["draft", "sent", "paid", "overdue"],
                    "description": "Filtrera på status",
                },
                "customer": {"type": "string", "description": "Filtrera på kundnamn"},
            },
            "additionalProperties": False,
        }

    async def execute(self, context: AgentContext, **kwargs: Any) -> ToolResult:
        books = self._ledger.for_company(context.company_id)
        books.refresh_overdue()
        invoices = books.invoices
        if kwargs.get("status"):
            invoices = [i for i in invoices if i.status == kwargs["status"]]
        if kwargs.get("customer"):
            needle = kwargs["customer"].lower()
            invoices = [i for i in invoices if needle in i.customer.lower()]
        invoices = invoices[: kwargs.get("limit", 10)]

        if not invoices:
            return ToolResult(success=True, output="Inga kundfakturor hittades.", data={"invoices": []})
        total = sum(i.total for i in invoices)
        return ToolResult(
            success=True,
            output=f"Hittade {len(invoices)} kundfakturor på totalt {format_sek(total)}.",
            data={"invoices": [_invoice_data(i) for i in invoices]},
        )


class CreateInvoiceTool(BaseTool):
    def __init__(self, ledger: Ledger) -> None:
        self._ledger = ledger

    @property
    def name(self) -> str:
        return "create_invoice"

    @property
    def description(self) -> str:
        return "Skapa en kundfaktura. Kräver bekräftelse innan skapande."

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "customer_name": {"type": "string", "description": "Kundens namn"},
                "amount": {"type": "number", "description": "Belopp exklusive moms", "minimum": 0},
                "description": {"type": "string", "description": "Beskrivning av fakturan"},
                "due_date": {"type": "string", "description": "Förfallodatum (YYYY-MM-DD)"},
                "vat_rate": {
                    "type": "number",
                    "enum": [0, 0.06, 0.12, 0.25],
                    "description": "Momssats (standard: 0.25 = 25%)",
                },
            },
            "required": ["customer_name", "amount", "description"],
            "additionalProperties": False,
        }

    @property
    def mutating(self) -> bool:
        return True

    def summarize(self, args: dict[str, Any]) -> str:
        vat_rate = args.get("vat_rate", 0.25)
        total = args["amount"] * (1 + vat_rate)
        return f"Skapa faktura till {args['customer_name']} på {format_sek(total)} inkl. moms"

    def warnings(self, args: dict[str, Any]) -> list[str]:
        if args.get("vat_rate", 0.25) == 0:
            return ["Fakturan skapas utan moms."]
        return []

    async def execute(self, context: AgentContext, **kwargs: Any) -> ToolResult:
        due = kwargs.get("due_date")
        try:
            due_date = date.fromisoformat(due) if due else None
        except ValueError:
            return ToolResult(success=False, error=f"Ogiltigt datum: {due}")

        books = self._ledger.for_company(context.company_id)
        invoice = books.add_invoice(
            customer=kwargs["customer_name"],
            amount=kwargs["amount"],
            description=kwargs["description"],
            vat_rate=kwargs.get("vat_rate", 0.25),
            due_date=due_date,
        )
        log.info("invoice_created", invoice_id=invoice.id, company_id=context.company_id)
        return ToolResult(
            success=True,
            output=f"Faktura {invoice.id} skapad till {invoice.customer}. Totalt: {format_sek(invoice.total)}.",
            data={"invoice": _invoice_data(invoice)},
        )


class SendInvoiceReminderTool(BaseTool):
    def __init__(self, ledger: Ledger) -> None:
        self._ledger = ledger

    @property
    def name(self) -> str:
        return "send_invoice_reminder"

    @property
    def description(self) -> str:
        return "Skicka betalningspåminnelse för en obetald kundfaktura."

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "invoice_id": {"type": "string", "description": "Fakturans id"},
                "message": {"type": "string", "description": "Valfritt meddelande till kunden"},
            },
            "required": ["invoice_id"],
            "additionalProperties": False,
        }

    @property
    def mutating(self) -> bool:
        return True

    def summarize(self, args: dict[str, Any]) -> str:
        return f"Skicka påminnelse för faktura {args['invoice_id']}"

    async def execute(self, context: AgentContext, **kwargs: Any) -> ToolResult:
        books = self._ledger.for_company(context.company_id)
        invoice = books.get_invoice(kwargs["invoice_id"])
        if invoice is None:
            return ToolResult(success=False, error=f"Faktura {kwargs['invoice_id']} finns inte.")
        if invoice.status == "paid":
            return ToolResult(success=False, error=f"Faktura {invoice.id} är redan betald.")
        invoice.reminders += 1
        return ToolResult(
            success=True,
            output=f"Påminnelse {invoice.reminders} skickad till {invoice.customer}.",
            data={"invoice_id": invoice.id, "reminders": invoice.reminders},
        )
