# Models package — import all models here so Alembic can discover them.

from credit_ledger.models.customer import Customer, CreditBalance  # noqa: F401
from credit_ledger.models.transaction import (  # noqa: F401
    Transaction,
    CreditLedgerEntry,
)
from credit_ledger.models.subscription import Subscription  # noqa: F401
from credit_ledger.models.webhook_event import WebhookEventLog  # noqa: F401
