"""
Status — агрегатор живого статуса и раздача снапшотов подписчикам.
"""

from botdash.status.aggregator import StatusAggregator
from botdash.status.feed import LiveFeed
from botdash.status.models import BotStatus, CredentialStatus, StatusSnapshot, WebStatus

__all__ = [
    "BotStatus",
    "CredentialStatus",
    "LiveFeed",
    "StatusAggregator",
    "StatusSnapshot",
    "WebStatus",
]
