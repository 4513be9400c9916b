from subscription_renewer.models.subscription_model import (
    RenewalResult,
    RenewalSummary,
    SubscriptionRecord,
)
