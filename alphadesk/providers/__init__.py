"""Collaborator interfaces and in-memory implementations."""

from alphadesk.providers.base import (
    BrokerageProvider,
    Collaborators,
    CryptoRankingProvider,
    LLMJudge,
    MarketDataProvider,
    NotificationSink,
    OptionsDataProvider,
    SocialFeedProvider,
)

__all__ = [
    "BrokerageProvider",
    "Collaborators",
    "CryptoRankingProvider",
    "LLMJudge",
    "MarketDataProvider",
    "NotificationSink",
    "OptionsDataProvider",
    "SocialFeedProvider",
]
