"""UI navigation tool."""

from __future__ import annotations

from typing import Any

from scopeai.models import AgentContext
from scopeai.tools.base import BaseTool, ToolResult

ROUTES: dict[str, str] = {
    "dashboard": "/dashboard",
    "bokforing": "/dashboard/bokforing",
    "verifikationer": "/dashboard/bokforing?tab=verifikationer",
    "kvitton": "/dashboard/bokforing?tab=kvitton",
    "fakturor": "/dashboard/bokforing?tab=kundfakturor",
    "loner": "/dashboard/loner",
    "skatt": "/dashboard/skatt",
    "moms": "/dashboard/skatt?tab=moms",
    "rapporter": "/dashboard/rapporter",
    "statistik": "/dashboard/foretagsstatistik",
    "handelser": "/dashboard/handelser",
    "installningar": "/dashboard/installningar",
}

# Words users type for each page
_ALIASES: dict[str, tuple[str, ...]] = {
    "fakturor": ("faktura", "fakturor", "invoice"),
    "kvitton": ("kvitto", "kvitton", "receipt"),
    "verifikationer": ("verifikation", "verifikationer"),
    "loner": ("lön", "löner", "lönesidan", "payroll"),
    "moms": ("moms", "vat"),
    "skatt": ("skatt", "deklaration"),
    "rapporter": ("rapport", "rapporter", "resultaträkning", "balansräkning"),
    "statistik": ("statistik", "nyckeltal", "kpi"),
    "handelser": ("händelse", "händelser", "tidslinje"),
    "installningar": ("inställning", "inställningar", "settings"),
    "bokforing": ("bokföring", "huvudbok"),
    "dashboard": ("start", "hem", "översikt", "dashboard"),
}


def match_page(text: str) -> str | None:
    """Best page key for free text, or None."""
    lowered = text.lower()
    if lowered in ROUTES:
        return lowered
    for page, aliases in _ALIASES.items():
        if any(alias in lowered for alias in aliases):
            return page
    return None


class NavigateTool(BaseTool):
    @property
    def name(self) -> str:
        return "navigate"

    @property
    def description(self) -> str:
        return "Navigera användaren till en sida i appen."

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "page": {"type": "string", "description": "Sidans namn, t.ex. 'fakturor' eller 'moms'"},
            },
            "required": ["page"],
            "additionalProperties": False,
        }

    async def execute(self, context: AgentContext, **kwargs: Any) -> ToolResult:
        page = match_page(kwargs["page"])
        if page is None:
            return ToolResult(success=False, error=f"Hittar ingen sida som matchar '{kwargs['page']}'.")
        return ToolResult(
            success=True,
            output=f"Öppnar {page}.",
            data={"page": page, "path": ROUTES[page]},
        )
