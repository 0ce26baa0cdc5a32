"""Models package."""

from .profile import Profile
from .company import Company
from .company_phone import CompanyPhone
from .user_credits import UserCredits
from .credit_transaction import CreditTransaction
from .credit_package import CreditPackage
from .audit_log import AuditLog
