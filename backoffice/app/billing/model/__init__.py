from backoffice.app.billing.model.event import BillingEvent, WebhookEvent
from backoffice.app.billing.model.subscription import Invoice, Subscription
