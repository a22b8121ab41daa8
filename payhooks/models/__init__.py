# Models package — import all models here so Alembic can discover them.

from payhooks.models.webhook_event import WebhookEvent  # noqa: F401
from payhooks.models.subscription import Subscription  # noqa: F401
from payhooks.models.payment import Payment  # noqa: F401
