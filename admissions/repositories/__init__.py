"""Repositories: thin persistence accessors; callers own commit/rollback"""
from .billing import (
    PlanRepository,
    SubscriptionRepository,
    TransactionRepository,
    ApplicationFeeRepository,
    WebhookRepository
)
from .accounts import UserRepository, AdminRepository

__all__ = [
    "PlanRepository",
    "SubscriptionRepository",
    "TransactionRepository",
    "ApplicationFeeRepository",
    "WebhookRepository",
    "UserRepository",
    "AdminRepository"
]
