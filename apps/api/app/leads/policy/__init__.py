from app.leads.policy.keys import POLICY_DEFINITIONS, PolicyDefinition, PolicyValueType
from app.leads.policy.models import PolicySetting, StatusRotationRule
from app.leads.policy.seed import seed_policies
from app.leads.policy.service import PolicySnapshot, PolicyStore, StatusRule, policy_store, snapshot_from_values

__all__ = [
    "POLICY_DEFINITIONS",
    "PolicyDefinition",
    "PolicyValueType",
    "PolicySetting",
    "StatusRotationRule",
    "seed_policies",
    "PolicySnapshot",
    "PolicyStore",
    "StatusRule",
    "policy_store",
    "snapshot_from_values",
]
