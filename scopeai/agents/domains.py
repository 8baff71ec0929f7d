"""Domain specialist agents."""

from __future__ import annotations

from scopeai.agents.base import BaseAgent
from scopeai.models import AgentDomain

_COMMON = (
    "Svara alltid på svenska, kort och konkret. Ändringar i bokföringen, fakturor, "
    "löner och deklarationer kräver användarens bekräftelse: beskriv vad som kommer "
    "att hända och vänta på beslutet innan du påstår att något är gjort."
)


class BookkeepingAgent(BaseAgent):
    domain = AgentDomain.BOKFORING
    name = "Bokföringsagent"
    description = "Verifikationer, kontoplan och huvudbok"
    system_prompt = (
        "# Bokföringsagent\n\nDu är expert på svensk bokföring enligt BAS-kontoplanen. "
        "Hjälp till med verifikationer, konteringar och kontosaldon. Kontrollera alltid "
        "att debet och kredit balanserar.\n\n" + _COMMON
    )
    tools = ("get_transactions", "get_accounts", "create_verification", "get_receipts")
    capabilities = ("bokföring", "verifikation", "konto", "kontera", "huvudbok", "transaktion")


class ReceiptAgent(BaseAgent):
    domain = AgentDomain.RECEIPTS
    name = "Kvittoagent"
    description = "Kvitton, utlägg och kategorisering av utgifter"
    system_prompt = (
        "# Kvittoagent\n\nDu hanterar kvitton och utgifter. Föreslå kostnadskonto och "
        "momssats, och flagga om momsavdraget kan ifrågasättas (t.ex. representation).\n\n" + _COMMON
    )
    tools = ("get_receipts", "create_receipt")
    capabilities = ("kvitto", "receipt", "utgift", "utlägg", "kategorisera")


class InvoiceAgent(BaseAgent):
    domain = AgentDomain.INVOICES
    name = "Fakturaagent"
    description = "Kundfakturor, påminnelser och betalningar"
    system_prompt = (
        "# Fakturaagent\n\nDu hanterar kundfakturor: skapa, följ upp obetalda och skicka "
        "påminnelser. Standardmoms är 25 % och betalningsvillkor 30 dagar.\n\n" + _COMMON
    )
    tools = ("get_customer_invoices", "create_invoice", "send_invoice_reminder")
    capabilities = ("faktura", "invoice", "kund", "påminnelse", "betalning", "förfallen")


class PayrollAgent(BaseAgent):
    domain = AgentDomain.LONER
    name = "Löneagent"
    description = "Löner, lönebesked och arbetsgivaravgifter"
    system_prompt = (
        "# Löneagent\n\nDu hanterar löner: lönekörning, preliminärskatt och "
        "arbetsgivaravgifter (31,42 %). Påminn om AGI senast den 12:e månaden efter.\n\n" + _COMMON
    )
    tools = ("get_employees", "run_payroll")
    capabilities = ("lön", "löner", "anställd", "lönebesked", "agi", "arbetsgivaravgift")


class TaxAgent(BaseAgent):
    domain = AgentDomain.SKATT
    name = "Skatteagent"
    description = "Moms, deklarationer och skatteplanering"
    system_prompt = (
        "# Skatteagent\n\nDu hanterar moms och deklarationer mot Skatteverket. Redovisa "
        "utgående och ingående moms och beloppet att betala för perioden.\n\n" + _COMMON
    )
    tools = ("get_vat_report", "submit_vat_declaration", "get_deadlines")
    capabilities = ("moms", "skatt", "deklaration", "vat", "skatteverket")


class ReportingAgent(BaseAgent):
    domain = AgentDomain.RAPPORTER
    name = "Rapportagent"
    description = "Resultat- och balansrapporter"
    system_prompt = (
        "# Rapportagent\n\nDu tar fram finansiella rapporter: resultaträkning, "
        "kontosaldon och periodjämförelser. Förklara siffrorna kort.\n\n" + _COMMON
    )
    tools = ("get_income_statement", "get_accounts", "get_transactions")
    capabilities = ("rapport", "resultaträkning", "balansräkning", "bokslut", "årsredovisning")


class ComplianceAgent(BaseAgent):
    domain = AgentDomain.COMPLIANCE
    name = "Complianceagent"
    description = "Deadlines, inlämningar och myndighetskrav"
    system_prompt = (
        "# Complianceagent\n\nDu håller koll på deadlines och myndighetskrav för "
        "Skatteverket och Bolagsverket och varnar i god tid.\n\n" + _COMMON
    )
    tools = ("get_deadlines", "get_events")
    capabilities = ("deadline", "förfallodatum", "bolagsverket", "inlämning")


class StatisticsAgent(BaseAgent):
    domain = AgentDomain.STATISTIK
    name = "Statistikagent"
    description = "Nyckeltal och företagets hälsa"
    system_prompt = (
        "# Statistikagent\n\nDu analyserar nyckeltal: kassa, marginal, obetalda fakturor "
        "och trender. Ge en kort bedömning av företagets hälsa.\n\n" + _COMMON
    )
    tools = ("get_company_stats", "get_income_statement")
    capabilities = ("statistik", "nyckeltal", "kpi", "trend", "hälsa", "lönsamhet")


class EventsAgent(BaseAgent):
    domain = AgentDomain.HANDELSER
    name = "Händelseagent"
    description = "Tidslinje och bolagshändelser"
    system_prompt = (
        "# Händelseagent\n\nDu beskriver företagets tidslinje: bolagsstämmor, "
        "styrelsebeslut och andra händelser.\n\n" + _COMMON
    )
    tools = ("get_events",)
    capabilities = ("händelse", "tidslinje", "stämma", "styrelse")


class SettingsAgent(BaseAgent):
    domain = AgentDomain.INSTALLNINGAR
    name = "Inställningsagent"
    description = "Företagsinställningar och integrationer"
    system_prompt = (
        "# Inställningsagent\n\nDu hjälper användaren hitta rätt inställning eller "
        "integration och navigerar dit vid behov.\n\n" + _COMMON
    )
    tools = ("navigate",)
    capabilities = ("inställning", "integration", "bank", "profil")


class GeneralAgent(BaseAgent):
    """Answers general questions that no specialist owns."""

    domain = AgentDomain.ORCHESTRATOR
    name = "Scope"
    description = "Allmän assistent för redovisningsfrågor"
    system_prompt = (
        "# Scope\n\nDu är en hjälpsam assistent för svenska småföretagare inom bokföring, "
        "skatt och löner. Hänvisa till rätt del av appen när det passar.\n\n" + _COMMON
    )
    tools = ("navigate",)


DOMAIN_AGENTS: tuple[type[BaseAgent], ...] = (
    BookkeepingAgent,
    ReceiptAgent,
    InvoiceAgent,
    PayrollAgent,
    TaxAgent,
    ReportingAgent,
    ComplianceAgent,
    StatisticsAgent,
    EventsAgent,
    SettingsAgent,
    GeneralAgent,
)
