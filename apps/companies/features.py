"""
Feature flag catalog.

Feature flags switch whole product areas on or off per company. They are
evaluated independently of permissions: a view that needs both declares
both, and the feature is checked first.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Optional


class FeatureKey(str, Enum):
    HARDWARE_REQUESTS = 'hardware_requests'
    TONER_REQUESTS = 'toner_requests'
    USER_ACCOUNTS = 'user_accounts'
    MARKETING_REQUESTS = 'marketing_requests'
    DEPARTMENT_REQUESTS = 'department_requests'
    MONTHLY_NEWSLETTER = 'monthly_newsletter'
    MODALITY_MANAGEMENT = 'modality_management'
    PRINT_ORDERING = 'print_ordering'
    FRONT_CHAT = 'front_chat'
    FAX_CAMPAIGNS = 'fax_campaigns'
    KNOWLEDGE_BASE = 'knowledge_base'
    APPROVALS = 'approvals'


@dataclass(frozen=True)
class FeatureDefinition:
    key: FeatureKey
    label: str
    description: str


FEATURE_DEFINITIONS = (
    FeatureDefinition(FeatureKey.HARDWARE_REQUESTS, 'Hardware Requests',
                      'Hardware catalog and equipment requests.'),
    FeatureDefinition(FeatureKey.TONER_REQUESTS, 'Toner Requests',
                      'Printer toner ordering.'),
    FeatureDefinition(FeatureKey.USER_ACCOUNTS, 'User Accounts',
                      'New user account and offboarding requests.'),
    FeatureDefinition(FeatureKey.MARKETING_REQUESTS, 'Marketing Requests',
                      'Marketing request submission and approval.'),
    FeatureDefinition(FeatureKey.DEPARTMENT_REQUESTS, 'Department Requests',
                      'Requests routed to company departments.'),
    FeatureDefinition(FeatureKey.MONTHLY_NEWSLETTER, 'Monthly Newsletter',
                      'Newsletter submissions and publishing cycle.'),
    FeatureDefinition(FeatureKey.MODALITY_MANAGEMENT, 'Modality Management',
                      'Clinic modality details and network information.'),
    FeatureDefinition(FeatureKey.PRINT_ORDERING, 'Print Ordering',
                      'Print ordering forms for marketing material.'),
    FeatureDefinition(FeatureKey.FRONT_CHAT, 'Front Chat',
                      'Embedded support chat widget.'),
    FeatureDefinition(FeatureKey.FAX_CAMPAIGNS, 'Fax Campaigns',
                      'Fax campaign history and delivery logs.'),
    FeatureDefinition(FeatureKey.KNOWLEDGE_BASE, 'Knowledge Base',
                      'Company knowledge base articles.'),
    FeatureDefinition(FeatureKey.APPROVALS, 'Approvals',
                      'Approval queue for managers.'),
)

_FEATURE_DEFINITION_MAP = {definition.key.value: definition for definition in FEATURE_DEFINITIONS}

FEATURE_KEYS = tuple(_FEATURE_DEFINITION_MAP)


def _coerce(feature_key) -> Optional[str]:
    if isinstance(feature_key, FeatureKey):
        return feature_key.value
    if isinstance(feature_key, str):
        return feature_key
    return None


def get_feature_definition(feature_key) -> Optional[FeatureDefinition]:
    """Look up a feature by key; unknown keys return None."""
    return _FEATURE_DEFINITION_MAP.get(_coerce(feature_key))


def is_known_feature(feature_key) -> bool:
    return get_feature_definition(feature_key) is not None
