from .tenancy import Organization, OrgMember, Team, TeamMember
from .auth import User, SessionToken
from .security import SecurityEvent
from .catalog import Material, Location, Supplier
from .inventory import StockMovement
from .purchasing import PurchaseOrder, PurchaseOrderLine, PurchaseOrderReceipt

__all__ = [
    'Organization', 'OrgMember', 'Team', 'TeamMember',
    'User', 'SessionToken', 'SecurityEvent',
    'Material', 'Location', 'Supplier',
    'StockMovement',
    'PurchaseOrder', 'PurchaseOrderLine', 'PurchaseOrderReceipt',
]
