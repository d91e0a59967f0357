"""Models package - exports all SQLAlchemy models."""
# Tenancy
from quotation_tool.models.company import Company, CompanySettings, CompanyBranding
from quotation_tool.models.app_user import AppUser, UserRole

# Business Models
from quotation_tool.models.client import Client
from quotation_tool.models.quotation import Quotation
from quotation_tool.models.quotation_line import QuotationLine
from quotation_tool.models.quotation_template import QuotationTemplate, TemplateStatus, TemplateVisibility

# Notifications
from quotation_tool.models.notification import Notification, DeliveryStatus
from quotation_tool.models.notification_preferences import NotificationPreferences

from quotation_tool.models.audit_log import AuditLog, AuditAction

__all__ = [
    'Company', 'CompanySettings', 'CompanyBranding', 'AppUser', 'UserRole',
    'Client', 'Quotation', 'QuotationLine', 'QuotationTemplate', 'TemplateStatus', 'TemplateVisibility',
    'Notification', 'DeliveryStatus', 'NotificationPreferences',
    'AuditLog', 'AuditAction',
]
