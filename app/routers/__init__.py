from .billing_stripe import router as billing_stripe_router
from .webhooks import router as webhooks_router
