"""Azure Resource Manager listing client and paging helpers."""

from .client import ManagementClient, ManagementClientConfig, RequestTelemetryEvent
from .errors import AuthenticationError, BrokerError, EnumerationError, ErrorCategory
from .models import Subscription, Tenant
from .paging import ArmPager, Page, PageSource, collect, iter_pages

__all__ = [
    "ArmPager",
    "AuthenticationError",
    "BrokerError",
    "EnumerationError",
    "ErrorCategory",
    "ManagementClient",
    "ManagementClientConfig",
    "Page",
    "PageSource",
    "RequestTelemetryEvent",
    "Subscription",
    "Tenant",
    "collect",
    "iter_pages",
]
