"""Typed models for subscription records, change events and the replica."""

from creditsync.models.change import ChangeEvent, ChangeKind
from creditsync.models.debit import DebitOutcome, Notice, NoticeVariant
from creditsync.models.record import PreferredLanguage, SubscriptionRecord, parse_language
from creditsync.models.replica import LifecyclePhase, LocalReplica

__all__ = [
    "ChangeEvent",
    "ChangeKind",
    "DebitOutcome",
    "LifecyclePhase",
    "LocalReplica",
    "Notice",
    "NoticeVariant",
    "PreferredLanguage",
    "SubscriptionRecord",
    "parse_language",
]
