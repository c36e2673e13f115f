"""Profile and membership enums."""

from enum import Enum


class ProfileType(str, Enum):
    """
    Kind of party a profile represents.

    Organizations and caregivers are providers and sit behind the
    entitlement gate; families never pay.
    """

    ORGANIZATION = "organization"
    CAREGIVER = "caregiver"
    FAMILY = "family"

    @property
    def is_provider(self) -> bool:
        return self in PROVIDER_PROFILE_TYPES


PROVIDER_PROFILE_TYPES = frozenset({ProfileType.ORGANIZATION, ProfileType.CAREGIVER})


class MembershipPlan(str, Enum):
    FREE = "free"
    PRO = "pro"


class MembershipStatus(str, Enum):
    """Billing state mirrored from the payment provider."""

    FREE = "free"
    TRIALING = "trialing"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"


class BillingCycle(str, Enum):
    MONTHLY = "monthly"
    ANNUAL = "annual"
