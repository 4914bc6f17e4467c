"""API key management: loading, pooling and quota tracking."""

from mockforge.credentials.loader import load_credentials, parse_credentials
from mockforge.credentials.pool import Credential, CredentialPool, PoolStats, SelectionPolicy
from mockforge.credentials.quota import QuotaEstimator

__all__ = [
    "Credential",
    "CredentialPool",
    "PoolStats",
    "QuotaEstimator",
    "SelectionPolicy",
    "load_credentials",
    "parse_credentials",
]
