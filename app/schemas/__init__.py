from .billing import (
    CreateCustomerUserRequest, CreateCustomerOrganizationRequest,
    CheckoutSessionRequest, PortalSessionRequest,
    CustomerCreatedResponse, SubscriptionOut, ActiveSubscriptionResponse,
    CheckoutSessionResponse, PortalSessionResponse, WebhookAck,
)
