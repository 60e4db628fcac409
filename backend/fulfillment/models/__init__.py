from .tenancy import Tenant, Provider, OrderSequence
from .catalog import CatalogItem, CatalogAddon
from .customers import Customer, Wallet, WalletLedgerEntry
from .orders import DeliveryAgent, Order, OrderItem, ReassignmentEvent

__all__ = [
    'Tenant', 'Provider', 'OrderSequence',
    'CatalogItem', 'CatalogAddon',
    'Customer', 'Wallet', 'WalletLedgerEntry',
    'DeliveryAgent', 'Order', 'OrderItem', 'ReassignmentEvent',
]
