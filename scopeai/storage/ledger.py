"""In-memory company books backing the domain tools."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Literal
from uuid import uuid4

# BAS chart subset used by the built-in tools
ACCOUNTS: dict[str, str] = {
    "1510": "Kundfordringar",
    "1930": "Företagskonto",
    "2440": "Leverantörsskulder",
    "2610": "Utgående moms 25%",
    "2640": "Ingående moms",
    "2710": "Personalskatt",
    "2731": "Avräkning arbetsgivaravgifter",
    "3001": "Försäljning inom Sverige, 25% moms",
    "4010": "Inköp material och varor",
    "5410": "Förbrukningsinventarier",
    "6110": "Kontorsmateriel",
    "7210": "Löner till tjänstemän",
    "7510": "Arbetsgivaravgifter",
}

EMPLOYER_CONTRIBUTION_RATE = 0.3142


def _id(prefix: str) -> str:
    return f"{prefix}-{uuid4().hex[:8]}"


def _period_of(day: date) -> str:
    return f"{day.year}-{day.month:02d}"


def in_period(day: date, period: str) -> bool:
    """Match ``YYYY``, ``YYYY-MM`` or ``YYYY-Qn`` periods."""
    if len(period) == 4:
        return str(day.year) == period
    if "-Q" in period.upper():
        year, quarter = period.upper().split("-Q")
        return str(day.year) == year and (day.month - 1) // 3 + 1 == int(quarter)
    return _period_of(day) == period


@dataclass
class VerificationRow:
    account: str
    debit: float = 0.0
    credit: float = 0.0


@dataclass
class Verification:
    date: date
    description: str
    rows: list[VerificationRow]
    id: str = field(default_factory=lambda: _id("ver"))

    @property
    def balanced(self) -> bool:
        return round(sum(r.debit for r in self.rows) - sum(r.credit for r in self.rows), 2) == 0


@dataclass
class Invoice:
    customer: str
    amount: float
    vat_amount: float
    description: str
    issue_date: date
    due_date: date
    status: Literal["draft", "sent", "paid", "overdue"] = "sent"
    reminders: int = 0
    id: str = field(default_factory=lambda: _id("inv"))

    @property
    def total(self) -> float:
        return self.amount + self.vat_amount


@dataclass
class Receipt:
    supplier: str
    amount: float
    vat_amount: float
    date: date
    account: str = "4010"
    id: str = field(default_factory=lambda: _id("rec"))


@dataclass
class Employee:
    name: str
    monthly_salary: float
    tax_rate: float = 0.30
    id: str = field(default_factory=lambda: _id("emp"))


@dataclass
class Payslip:
    employee_id: str
    period: str
    gross: float
    tax: float
    employer_contribution: float
    id: str = field(default_factory=lambda: _id("pay"))

    @property
    def net(self) -> float:
        return self.gross - self.tax


@dataclass
class CompanyEvent:
    date: date
    title: str
    kind: str = "other"
    id: str = field(default_factory=lambda: _id("evt"))


@dataclass
class CompanyBooks:
    company_id: str
    invoices: list[Invoice] = field(default_factory=list)
    receipts: list[Receipt] = field(default_factory=list)
    verifications: list[Verification] = field(default_factory=list)
    employees: list[Employee] = field(default_factory=list)
    payslips: list[Payslip] = field(default_factory=list)
    events: list[CompanyEvent] = field(default_factory=list)
    vat_submissions: dict[str, float] = field(default_factory=dict)

    # -- postings ----------------------------------------------------------

    def post(self, day: date, description: str, rows: list[VerificationRow]) -> Verification:
        verification = Verification(date=day, description=description, rows=rows)
        if not verification.balanced:
            raise ValueError(f"Verification '{description}' does not balance")
        unknown = [r.account for r in rows if r.account not in ACCOUNTS]
        if unknown:
            raise ValueError(f"Unknown accounts: {', '.join(unknown)}")
        self.verifications.append(verification)
        return verification

    def balance(self, account: str, period: str | None = None) -> float:
        """Debit minus credit for one account."""
        total = 0.0
        for v in self.verifications:
            if period is not None and not in_period(v.date, period):
                continue
            for r in v.rows:
                if r.account == account:
                    total += r.debit - r.credit
        return round(total, 2)

    # -- invoices ----------------------------------------------------------

    def add_invoice(
        self,
        customer: str,
        amount: float,
        description: str,
        vat_rate: float = 0.25,
        issue_date: date | None = None,
        due_date: date | None = None,
    ) -> Invoice:
        issue_date = issue_date or date.today()
        invoice = Invoice(
            customer=customer,
            amount=amount,
            vat_amount=round(amount * vat_rate, 2),
            description=description,
            issue_date=issue_date,
            due_date=due_date or issue_date + timedelta(days=30),
        )
        self.invoices.append(invoice)
        self.post(
            issue_date,
            f"Faktura {invoice.id} {customer}",
            [
                VerificationRow("1510", debit=invoice.total),
                VerificationRow("3001", credit=invoice.amount),
                VerificationRow("2610", credit=invoice.vat_amount),
            ],
        )
        return invoice

    def get_invoice(self, invoice_id: str) -> Invoice | None:
        return next((i for i in self.invoices if i.id == invoice_id), None)

    def refresh_overdue(self, today: date | None = None) -> None:
        today = today or date.today()
        for invoice in self.invoices:
            if invoice.status == "sent" and invoice.due_date < today:
                invoice.status = "overdue"

    # -- receipts ----------------------------------------------------------

    def add_receipt(
        self,
        supplier: str,
        total: float,
        day: date | None = None,
        vat_rate: float = 0.25,
        account: str = "4010",
    ) -> Receipt:
        day = day or date.today()
        vat_amount = round(total - total / (1 + vat_rate), 2)
        receipt = Receipt(supplier=supplier, amount=round(total - vat_amount, 2), vat_amount=vat_amount, date=day, account=account)
        self.receipts.append(receipt)
        self.post(
            day,
            f"Kvitto {supplier}",
            [
                VerificationRow(account, debit=receipt.amount),
                VerificationRow("2640", debit=receipt.vat_amount),
                VerificationRow("1930", credit=round(total, 2)),
            ],
        )
        return receipt

    # -- payroll -----------------------------------------------------------

    def run_payroll(self, period: str, day: date | None = None) -> list[Payslip]:
        if any(p.period == period for p in self.payslips):
            raise ValueError(f"Payroll for {period} has already been run")
        day = day or date.today()
        slips: list[Payslip] = []
        for emp in self.employees:
            slip = Payslip(
                employee_id=emp.id,
                period=period,
                gross=emp.monthly_salary,
                tax=round(emp.monthly_salary * emp.tax_rate, 2),
                employer_contribution=round(emp.monthly_salary * EMPLOYER_CONTRIBUTION_RATE, 2),
            )
            slips.append(slip)
            self.post(
                day,
                f"Lön {period} {emp.name}",
                [
                    VerificationRow("7210", debit=slip.gross),
                    VerificationRow("7510", debit=slip.employer_contribution),
                    VerificationRow("2710", credit=slip.tax),
                    VerificationRow("2731", credit=slip.employer_contribution),
                    VerificationRow("1930", credit=round(slip.net, 2)),
                ],
            )
        self.payslips.extend(slips)
        return slips

    # -- tax ---------------------------------------------------------------

    def vat_report(self, period: str) -> dict[str, float]:
        output_vat = -self.balance("2610", period)
        input_vat = self.balance("2640", period)
        return {
            "output_vat": round(output_vat, 2),
            "input_vat": round(input_vat, 2),
            "vat_to_pay": round(output_vat - input_vat, 2),
        }

    # -- reporting ---------------------------------------------------------

    def income_statement(self, period: str | None = None) -> dict[str, float]:
        revenue = 0.0
        expenses = 0.0
        for v in self.verifications:
            if period is not None and not in_period(v.date, period):
                continue
            for r in v.rows:
                if r.account.startswith("3"):
                    revenue += r.credit - r.debit
                elif r.account[0] in "4567":
                    expenses += r.debit - r.credit
        return {
            "revenue": round(revenue, 2),
            "expenses": round(expenses, 2),
            "result": round(revenue - expenses, 2),
        }


class Ledger:
    """Books for every company, created on first access."""

    def __init__(self) -> None:
        self._books: dict[str, CompanyBooks] = {}

    def for_company(self, company_id: str) -> CompanyBooks:
        books = self._books.get(company_id)
        if books is None:
            books = CompanyBooks(company_id=company_id)
            self._books[company_id] = books
        return books

    def clear(self) -> None:
        self._books.clear()
