from agenda.models.branch import Branch, Staff, BusinessHours, StaffHours, Blackout
from agenda.models.service import Service, ServiceType, ServiceTypeAssignment
from agenda.models.appointment import Appointment, AppointmentStatus, Customer
from agenda.models.payment import Payment, PaymentStatus, PaymentKind, WebhookEvent, Reminder

__all__ = [
    "Branch",
    "Staff",
    "BusinessHours",
    "StaffHours",
    "Blackout",
    "Service",
    "ServiceType",
    "ServiceTypeAssignment",
    "Appointment",
    "AppointmentStatus",
    "Customer",
    "Payment",
    "PaymentStatus",
    "PaymentKind",
    "WebhookEvent",
    "Reminder",
]
