from __future__ import annotations

from prometheus_client import Counter

stripe_webhook_received_total = Counter(
    "stripe_webhook_received_total",
    "Number of verified Stripe webhook events received.",
    ["event_type"],
)
stripe_webhook_processed_total = Counter(
    "stripe_webhook_processed_total",
    "Number of Stripe webhook events processed successfully.",
    ["event_type"],
)
stripe_webhook_duplicate_total = Counter(
    "stripe_webhook_duplicate_total",
    "Number of Stripe webhook redeliveries skipped because they already processed.",
)
stripe_webhook_failed_total = Counter(
    "stripe_webhook_failed_total",
    "Number of Stripe webhook events that failed and were left for Stripe to retry.",
    ["event_type"],
)
course_seats_allocated_total = Counter(
    "course_seats_allocated_total",
    "Number of course seats allocated from purchases.",
    ["purchase_type"],
)
course_enrollments_created_total = Counter(
    "course_enrollments_created_total",
    "Number of course enrollments created.",
    ["source"],
)
course_invitations_sent_total = Counter(
    "course_invitations_sent_total",
    "Number of course invitation emails handed to the mail provider.",
)
course_invitations_accepted_total = Counter(
    "course_invitations_accepted_total",
    "Number of course invitations accepted.",
)
