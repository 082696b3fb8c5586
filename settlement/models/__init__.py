# Models package — import all models here so Alembic can discover them.

from settlement.models.artist import Artist  # noqa: F401
from settlement.models.venue import Venue  # noqa: F401
from settlement.models.artwork import Artwork  # noqa: F401
from settlement.models.order import Order  # noqa: F401
from settlement.models.webhook_event import WebhookEvent  # noqa: F401
from settlement.models.audit import AuditEvent  # noqa: F401
