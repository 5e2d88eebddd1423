"""
Web config — ключ API и группы управления (коллабораторы дашборда).
"""

from botdash.webconfig.credentials import CredentialState, CredentialStore, mask_api_key
from botdash.webconfig.management_groups import ManagementGroup, ManagementGroupStore

__all__ = [
    "CredentialState",
    "CredentialStore",
    "ManagementGroup",
    "ManagementGroupStore",
    "mask_api_key",
]
