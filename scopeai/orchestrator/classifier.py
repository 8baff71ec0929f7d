"""Intent classification: regex rules, an LLM classifier and the fallback policy."""

from __future__ import annotations

import json
import re
from abc import ABC, abstractmethod
from typing import Any

from scopeai.core.llm.client import LLMClient
from scopeai.core.llm.types import CallOptions, LLMMessage
from scopeai.errors import LLMError
from scopeai.models import (
    CATEGORY_DOMAINS,
    AgentContext,
    AgentDomain,
    Intent,
    IntentCategory,
    IntentEntity,
)
from scopeai.utils.logging import get_logger

log = get_logger(__name__)


class Classifier(ABC):
    @abstractmethod
    async def classify(self, utterance: str, context: AgentContext) -> Intent: ...


# ---------------------------------------------------------------------------
# Pattern rules
# ---------------------------------------------------------------------------

def _rules(*patterns: str) -> tuple[re.Pattern[str], ...]:
    return tuple(re.compile(p, re.IGNORECASE) for p in patterns)


INTENT_PATTERNS: dict[IntentCategory, tuple[re.Pattern[str], ...]] = {
    IntentCategory.RECEIPT: _rules(
        r"kvitto", r"utgift", r"utlägg", r"expense", r"receipt",
        r"kostnad.*bokför", r"ladda.*upp.*bild",
    ),
    IntentCategory.INVOICE: _rules(
        r"faktura", r"invoice", r"kund.*faktura", r"skicka.*faktura",
        r"betalning.*kund", r"förfall", r"påminnelse",
    ),
    IntentCategory.BOOKKEEPING: _rules(
        r"bokför", r"verifikation", r"kontering", r"transaktion",
        r"konto\s*\d", r"debet|kredit", r"huvudbok", r"BAS\s*konto",
    ),
    IntentCategory.PAYROLL: _rules(
        r"lön", r"salary", r"payroll", r"anställd", r"arbetsgivar",
        r"skatteavdrag", r"skattetabell", r"\bAGI\b", r"förmån",
        r"friskvård", r"tjänstebil",
    ),
    IntentCategory.TAX: _rules(
        r"moms", r"\bVAT\b", r"skatt(?!e.*tabell)", r"deklaration", r"ink2",
        r"periodisering", r"\bK10\b", r"skatteverket", r"F-skatt",
    ),
    IntentCategory.REPORTING: _rules(
        r"rapport", r"resultaträkning", r"balansräkning", r"P&L",
        r"nyckeltal", r"jämför.*period", r"årsredovisning", r"bokslut",
    ),
    IntentCategory.COMPLIANCE: _rules(
        r"deadline", r"förfall.*datum", r"myndighet", r"bolagsverket",
        r"anmäl", r"registrer", r"årsstämma", r"styrelse",
    ),
    IntentCategory.STATISTICS: _rules(
        r"statistik", r"\bKPI\b", r"soliditet", r"kassalikviditet",
        r"hur.*går.*det", r"trend", r"utveckling", r"jämför.*förra",
    ),
    IntentCategory.EVENTS: _rules(
        r"händelse", r"aktivitet", r"tidslinje", r"historik", r"vad.*hänt",
        r"logg", r"utdelning", r"kapitalförändring",
    ),
    IntentCategory.SETTINGS: _rules(
        r"inställning", r"settings", r"koppla.*bank", r"integration",
        r"användare", r"\bteam\b", r"prenumeration", r"\bplan\b", r"språk", r"notis",
    ),
    IntentCategory.NAVIGATION: _rules(
        r"^gå till", r"^öppna", r"^visa", r"^navigate", r"^go to", r"^open", r"^show me",
    ),
}

# Equal scores go to the category listed first
CATEGORY_PRIORITY: tuple[IntentCategory, ...] = (
    IntentCategory.INVOICE,
    IntentCategory.RECEIPT,
    IntentCategory.PAYROLL,
    IntentCategory.TAX,
    IntentCategory.BOOKKEEPING,
    IntentCategory.REPORTING,
    IntentCategory.COMPLIANCE,
    IntentCategory.STATISTICS,
    IntentCategory.EVENTS,
    IntentCategory.SETTINGS,
    IntentCategory.NAVIGATION,
)

_MONTHS = r"(?:januari|februari|mars|april|maj|juni|juli|augusti|september|oktober|november|december)"

ENTITY_PATTERNS: dict[str, tuple[re.Pattern[str], ...]] = {
    "amount": _rules(
        r"(\d[\d\s]*(?:[,.]\d{1,2})?)(?:\s*(?:kr|sek|kronor|:-))",
        r"SEK\s*(\d[\d\s]*(?:[,.]\d{1,2})?)",
    ),
    "date": _rules(
        r"\d{4}-\d{2}-\d{2}",
        r"\b\d{1,2}/\d{1,2}(?:/\d{2,4})?\b",
        _MONTHS + r"\s+\d{4}",
        r"\bQ[1-4]\s*\d{4}\b",
    ),
    "account": _rules(
        r"konto\s*(\d{4})",
        r"(\d{4})\s*(?:debet|kredit)",
    ),
    # Capitalized names; must not be case-insensitive
    "person": (
        re.compile(r"(?:för|till|från)\s+([A-ZÅÄÖ][a-zåäö]+(?:\s+[A-ZÅÄÖ][a-zåäö]+)?)"),
    ),
    "period": _rules(
        r"denna månad", r"förra månaden", r"\bi år\b", r"förra året",
        r"\b" + _MONTHS + r"\b", r"\bQ[1-4]\b",
    ),
}

SUB_INTENTS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("create", re.compile(r"\b(?:skapa|ny|nytt|lägg till|create|add|new)\b", re.IGNORECASE)),
    ("query", re.compile(r"\b(?:visa|hämta|get|show|list)\b", re.IGNORECASE)),
    ("update", re.compile(r"\b(?:uppdatera|ändra|edit|update|change)\b", re.IGNORECASE)),
    ("delete", re.compile(r"\b(?:ta bort|radera|delete|remove)\b", re.IGNORECASE)),
    ("submit", re.compile(r"\b(?:skicka|submit|send)\b", re.IGNORECASE)),
    ("analyze", re.compile(r"\b(?:analysera|analys|analyze|analysis)\b", re.IGNORECASE)),
    ("compare", re.compile(r"\b(?:jämför|compare)\b", re.IGNORECASE)),
    ("generate", re.compile(r"\b(?:generera|generate)\b", re.IGNORECASE)),
)

_NO_MATCH_CONFIDENCE = 0.3
_ENTITY_CONFIDENCE = 0.8


def score_categories(utterance: str) -> dict[IntentCategory, int]:
    """Number of matching rules per category, zero scores omitted."""
    text = utterance.strip()
    scores: dict[IntentCategory, int] = {}
    for category, patterns in INTENT_PATTERNS.items():
        score = sum(1 for p in patterns if p.search(text))
        if score:
            scores[category] = score
    return scores


def rank_categories(scores: dict[IntentCategory, int]) -> list[IntentCategory]:
    """Categories by descending score, ties in ``CATEGORY_PRIORITY`` order."""
    return sorted(scores, key=lambda c: (-scores[c], CATEGORY_PRIORITY.index(c)))


def extract_entities(utterance: str) -> list[IntentEntity]:
    entities: list[IntentEntity] = []
    seen: set[tuple[str, str]] = set()
    for kind, patterns in ENTITY_PATTERNS.items():
        for pattern in patterns:
            for match in pattern.finditer(utterance):
                value = (match.group(1) if match.groups() else match.group(0)).strip()
                if kind == "amount":
                    value = re.sub(r"\s", "", value).replace(",", ".")
                if (kind, value) in seen:
                    continue
                seen.add((kind, value))
                entities.append(IntentEntity(
                    type=kind,  # type: ignore[arg-type]
                    value=value,
                    raw=match.group(0),
                    confidence=_ENTITY_CONFIDENCE,
                ))
    return entities


def detect_sub_intent(utterance: str) -> str:
    for name, pattern in SUB_INTENTS:
        if pattern.search(utterance):
            return name
    return "query"


class PatternClassifier(Classifier):
    """Keyword rules, no network. Always returns an intent."""

    async def classify(self, utterance: str, context: AgentContext) -> Intent:
        return self.classify_text(utterance)

    def classify_text(self, utterance: str) -> Intent:
        scores = score_categories(utterance)
        entities = extract_entities(utterance)
        sub_intent = detect_sub_intent(utterance)

        if not scores:
            return Intent(
                category=IntentCategory.GENERAL,
                confidence=_NO_MATCH_CONFIDENCE,
                target_domain=AgentDomain.ORCHESTRATOR,
                sub_intent=sub_intent,
                entities=entities,
                matched=False,
            )

        ranked = rank_categories(scores)
        best = ranked[0]
        best_score = scores[best]
        second_score = scores[ranked[1]] if len(ranked) > 1 else 0
        multi = second_score > 0 and best_score - second_score <= 1

        suggested: list[AgentDomain] = []
        if multi:
            for category in ranked[:3]:
                domain = CATEGORY_DOMAINS[category]
                if domain not in suggested:
                    suggested.append(domain)

        intent = Intent(
            category=best,
            confidence=min(0.5 + 0.15 * best_score, 0.95),
            target_domain=CATEGORY_DOMAINS[best],
            sub_intent=sub_intent,
            entities=entities,
            requires_multi_agent=multi,
            suggested_domains=suggested,
        )
        log.debug(
            "intent_pattern",
            category=best.value,
            score=best_score,
            runner_up=second_score,
            multi=multi,
        )
        return intent


# ---------------------------------------------------------------------------
# LLM classification
# ---------------------------------------------------------------------------

CLASSIFICATION_PROMPT = """You are an intent classifier for a Swedish accounting platform called Scope.
Classify the user's message into one category and extract entities.

## Categories
- RECEIPT: receipts, expenses, receipt image uploads
- INVOICE: customer invoices, sending invoices, payment tracking
- BOOKKEEPING: transactions, verifications, chart of accounts
- PAYROLL: salaries, benefits, AGI declarations, employees
- TAX: VAT/moms, income tax, K10, periodiseringsfonder
- REPORTING: financial reports, P&L, balance sheet, comparisons
- COMPLIANCE: deadlines, authority filings, annual meetings
- STATISTICS: KPIs, company health, trends
- EVENTS: activity timeline, corporate actions, history
- SETTINGS: configuration, integrations, users
- NAVIGATION: the user wants to open a page
- GENERAL: greetings, chitchat, unclear requests
- MULTI_DOMAIN: the request spans several categories

## Entity types
amount, date, account, person, period, company, document

## Response format
Return JSON only:
{"category": "CATEGORY", "confidence": 0.0-1.0,
 "sub_intent": "create|query|update|delete|submit|analyze|compare|generate",
 "entities": [{"type": "amount", "value": "450", "raw": "450 kr"}],
 "requires_multi_agent": false, "suggested_domains": ["invoices"]}"""

_ENTITY_TYPES = {"amount", "date", "account", "person", "company", "document", "period"}


def _classification_request(utterance: str, context: AgentContext) -> str:
    lines = [f'Classify this message:\n\n"{utterance}"\n']
    if context.company_type:
        lines.append(f"Context: company type is {context.company_type}.")
    lines.append(f"Language: {'Swedish' if context.locale == 'sv' else 'English'}")
    return "\n".join(lines)


def _strip_fences(text: str) -> str:
    text = text.strip()
    if text.startswith("```"):
        text = text.split("\n", 1)[1] if "\n" in text else ""
        text = text.rsplit("```", 1)[0]
    return text.strip()


def parse_classification(data: dict[str, Any]) -> Intent:
    """Normalize a model's JSON answer into an :class:`Intent`."""
    if not isinstance(data, dict):
        raise TypeError("classification must be a JSON object")

    try:
        category = IntentCategory(str(data.get("category", "")).upper())
    except ValueError:
        category = IntentCategory.GENERAL

    raw_confidence = data.get("confidence")
    confidence = float(raw_confidence) if isinstance(raw_confidence, (int, float)) else 0.5

    entities = []
    for item in data.get("entities") or []:
        if not isinstance(item, dict):
            continue
        kind = item.get("type")
        entities.append(IntentEntity(
            type=kind if kind in _ENTITY_TYPES else "other",
            value=str(item.get("value", "")),
            raw=str(item.get("raw", item.get("value", ""))),
            confidence=confidence,
        ))

    suggested: list[AgentDomain] = []
    for value in data.get("suggested_domains") or data.get("suggestedAgents") or []:
        try:
            suggested.append(AgentDomain(value))
        except ValueError:
            log.debug("intent_llm_unknown_domain", domain=value)

    multi = bool(data.get("requires_multi_agent", data.get("requiresMultiAgent", False)))
    return Intent(
        category=category,
        confidence=confidence,
        target_domain=CATEGORY_DOMAINS[category],
        sub_intent=data.get("sub_intent") or data.get("subIntent"),
        entities=entities,
        requires_multi_agent=multi or category == IntentCategory.MULTI_DOMAIN,
        suggested_domains=suggested,
        source="llm",
    )


class LLMClassifier(Classifier):
    """Asks a small model for a JSON classification. Raises on any failure."""

    def __init__(self, llm: LLMClient, model: str = "gpt-4o-mini", timeout: float = 5.0) -> None:
        self._llm = llm
        self._model = model
        self._timeout = timeout

    async def classify(self, utterance: str, context: AgentContext) -> Intent:
        response = await self._llm.call(CallOptions(
            model=self._model,
            messages=[
                LLMMessage(role="system", content=CLASSIFICATION_PROMPT),
                LLMMessage(role="user", content=_classification_request(utterance, context)),
            ],
            temperature=0.0,
            max_tokens=200,
            timeout=self._timeout,
            abort=context.abort,
        ))
        if not response.content:
            raise ValueError("empty classification response")
        intent = parse_classification(json.loads(_strip_fences(response.content)))
        log.debug("intent_llm", category=intent.category.value, confidence=intent.confidence)
        return intent


class FallbackClassifier(Classifier):
    """Primary first; the secondary only when the primary is unsure.

    Any failure of the secondary returns the primary's guess unchanged.
    """

    def __init__(self, primary: Classifier, secondary: Classifier, llm_threshold: float = 0.6) -> None:
        self._primary = primary
        self._secondary = secondary
        self._threshold = llm_threshold

    async def classify(self, utterance: str, context: AgentContext) -> Intent:
        guess = await self._primary.classify(utterance, context)
        if guess.matched and guess.confidence >= self._threshold:
            return guess
        try:
            return await self._secondary.classify(utterance, context)
        except (LLMError, ValueError, KeyError, TypeError) as e:
            log.warning("intent_fallback", error=str(e), category=guess.category.value)
            return guess
