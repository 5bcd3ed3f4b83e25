"""
Test factories for generating realistic test data.

Uses factory_boy for declarative test data generation.
"""

from .booking import (
    BranchFactory,
    StaffFactory,
    ServiceFactory,
    ServiceTypeFactory,
    ServiceTypeAssignmentFactory,
    CustomerFactory,
    AppointmentFactory,
    PaymentFactory,
    seed_booking,
)
from .providers import make_provider, lookup_for

__all__ = [
    "BranchFactory",
    "StaffFactory",
    "ServiceFactory",
    "ServiceTypeFactory",
    "ServiceTypeAssignmentFactory",
    "CustomerFactory",
    "AppointmentFactory",
    "PaymentFactory",
    "seed_booking",
    # Providers
    "make_provider",
    "lookup_for",
]
