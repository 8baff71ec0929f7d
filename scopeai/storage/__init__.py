"""Repositories for audit entries, conversations and company books."""

from scopeai.storage.base import AuditRepository, ConversationRepository
from scopeai.storage.ledger import CompanyBooks, Ledger
from scopeai.storage.memory import InMemoryAuditRepository, InMemoryConversationRepository
from scopeai.storage.sqlite import SqliteAuditRepository, SqliteConversationRepository

__all__ = [
    "AuditRepository",
    "ConversationRepository",
    "CompanyBooks",
    "Ledger",
    "InMemoryAuditRepository",
    "InMemoryConversationRepository",
    "SqliteAuditRepository",
    "SqliteConversationRepository",
]
