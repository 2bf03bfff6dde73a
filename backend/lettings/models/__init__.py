from .agencies import Agency, Property, Bedroom, Application
from .tenancies import Tenancy, TenancyMember, GuarantorAgreement
from .payments import PaymentSchedule, Payment
from .events import TenancyEvent

__all__ = [
    'Agency', 'Property', 'Bedroom', 'Application',
    'Tenancy', 'TenancyMember', 'GuarantorAgreement',
    'PaymentSchedule', 'Payment',
    'TenancyEvent',
]
