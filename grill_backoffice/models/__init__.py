from grill_backoffice.models.inventory import (
    InventoryBalance,
    InventoryItem,
    RecipeComponent,
    StockLedgerEntry,
)
from grill_backoffice.models.webhook_event import WebhookEvent
from grill_backoffice.models.catalog_variation import CatalogVariation
