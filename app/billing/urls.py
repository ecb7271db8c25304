"""
URL configuration for the billing app.

Routes:
    - POST webhooks/payment-events - Payment gateway webhook
    - POST jobs/grace-period-sweep - Grace-period sweep trigger
    - POST jobs/suspension-sweep - Provider suspension sweep trigger
    - POST accounts/<id>/takeover - Start a billing takeover
    - GET accounts/<id>/billing-status - Entitlement and standing
    - POST subscriptions/<id>/cancel - Cancel at period end
    - POST subscriptions/<id>/resume - Resume

All routes are prefixed with /api/v1/ when included in the main URLconf.
Paths carry no trailing slash; the gateway and job schedulers are
configured with these exact URLs.
"""

from django.urls import path

from billing import views
from billing.webhooks.views import payment_events_webhook

app_name = "billing"

urlpatterns = [
    # Webhooks
    path("webhooks/payment-events", payment_events_webhook, name="payment_events_webhook"),
    # Job triggers
    path("jobs/grace-period-sweep", views.GracePeriodSweepView.as_view(), name="grace_period_sweep"),
    path("jobs/suspension-sweep", views.SuspensionSweepView.as_view(), name="suspension_sweep"),
    # Accounts
    path(
        "accounts/<uuid:account_id>/takeover",
        views.AccountTakeoverView.as_view(),
        name="account_takeover",
    ),
    path(
        "accounts/<uuid:account_id>/billing-status",
        views.BillingStatusView.as_view(),
        name="billing_status",
    ),
    # Subscriptions
    path(
        "subscriptions/<uuid:subscription_id>/cancel",
        views.SubscriptionCancelView.as_view(),
        name="subscription_cancel",
    ),
    path(
        "subscriptions/<uuid:subscription_id>/resume",
        views.SubscriptionResumeView.as_view(),
        name="subscription_resume",
    ),
]
