"""Tools the domain agents can call."""

from __future__ import annotations

from scopeai.storage.ledger import Ledger
from scopeai.tools.base import BaseTool, ToolResult
from scopeai.tools.bookkeeping import (
    CreateReceiptTool,
    CreateVerificationTool,
    GetAccountsTool,
    GetReceiptsTool,
    GetTransactionsTool,
)
from scopeai.tools.insights import GetCompanyStatsTool, GetEventsTool, GetIncomeStatementTool
from scopeai.tools.invoices import CreateInvoiceTool, GetCustomerInvoicesTool, SendInvoiceReminderTool
from scopeai.tools.navigation import NavigateTool
from scopeai.tools.payroll import GetEmployeesTool, RunPayrollTool
from scopeai.tools.registry import ToolRegistry
from scopeai.tools.tax import GetDeadlinesTool, GetVatReportTool, SubmitVatDeclarationTool

__all__ = ["BaseTool", "ToolResult", "ToolRegistry", "builtin_tools"]


def builtin_tools(ledger: Ledger) -> list[BaseTool]:
    return [
        GetCustomerInvoicesTool(ledger),
        CreateInvoiceTool(ledger),
        SendInvoiceReminderTool(ledger),
        GetTransactionsTool(ledger),
        GetAccountsTool(ledger),
        CreateVerificationTool(ledger),
        GetReceiptsTool(ledger),
        CreateReceiptTool(ledger),
        GetEmployeesTool(ledger),
        RunPayrollTool(ledger),
        GetVatReportTool(ledger),
        SubmitVatDeclarationTool(ledger),
        GetDeadlinesTool(),
        GetIncomeStatementTool(ledger),
        GetCompanyStatsTool(ledger),
        GetEventsTool(ledger),
        NavigateTool(),
    ]
