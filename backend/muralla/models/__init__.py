from .tenancy import Tenant
from .catalog import Product, FulfillmentType
from .recipes import Recipe, RecipeLine
from .sales import Transaction, TransactionItem, IngredientConsumption, PAYMENT_METHODS
from .production import ProductionBatch, BatchStatus, BATCH_TRANSITIONS
from .ledger import ProductMovement, MovementType, ReferenceType
from .documents import DocumentSequence

__all__ = [
    'Tenant',
    'Product', 'FulfillmentType',
    'Recipe', 'RecipeLine',
    'Transaction', 'TransactionItem', 'IngredientConsumption', 'PAYMENT_METHODS',
    'ProductionBatch', 'BatchStatus', 'BATCH_TRANSITIONS',
    'ProductMovement', 'MovementType', 'ReferenceType',
    'DocumentSequence',
]
