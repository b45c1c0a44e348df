"""Prometheus metrics for the application portal.

Operational counters for the attachment lifecycle: blob writes, failed
uploads, rollbacks, compensating deletes and references that could not be
resolved when rendering listings.
"""

from prometheus_client import Counter, Histogram

# Blob store metrics
blobs_uploaded_total = Counter(
    "portal_blobs_uploaded_total",
    "Total blobs written to the blob store",
    ["slot"]
)

blob_upload_failures_total = Counter(
    "portal_blob_upload_failures_total",
    "Total blob writes that failed",
    ["slot"]
)

blob_upload_bytes = Histogram(
    "portal_blob_upload_bytes",
    "Size of uploaded attachments in bytes",
    buckets=[10_000, 100_000, 500_000, 1_000_000, 5_000_000, 10_000_000, 25_000_000]
)

# Transaction metrics
upload_rollbacks_total = Counter(
    "portal_upload_rollbacks_total",
    "Total upload transactions rolled back",
    ["reason"]  # reason: upload_failure|persistence_failure|cancelled|error|abandoned
)

compensating_deletes_total = Counter(
    "portal_compensating_deletes_total",
    "Blob deletions issued by rollback or slot replacement",
    ["source", "status"]  # source: rollback|superseded, status: deleted|missing|error
)

# Listing metrics
unresolved_references_total = Counter(
    "portal_unresolved_references_total",
    "Attachment references that could not be resolved during normalization",
    ["variant"]
)

submissions_total = Counter(
    "portal_submissions_total",
    "Application submissions and slot mutations",
    ["variant", "operation", "status"]  # operation: submit|replace_slot, status: success|error
)
