SUBMITTING_MESSAGE = "Starting enhancement..."
SUBMITTED_MESSAGE = "Request submitted..."
QUEUED_MESSAGE = "Waiting in queue..."
PROCESSING_MESSAGE = "Enhancing your photo..."
FINALIZING_MESSAGE = "Finalizing..."
COMPLETED_MESSAGE = "Enhancement complete!"
TIMEOUT_MESSAGE = "Processing took too long"
CANCELLED_MESSAGE = "Enhancement cancelled"
FAILED_MESSAGE = "Enhancement failed"

TIMEOUT_ERROR = "Processing timeout"
CANCELLED_ERROR = "Cancelled"
NO_OUTPUT_ERROR = "No output URL in worker response"
STALE_JOB_ERROR = "Processing timeout - please try again"

SUBMITTING_PROGRESS = 0
SUBMITTED_PROGRESS = 5
QUEUED_PROGRESS = 10
PROCESSING_BASE_PROGRESS = 30
PROCESSING_PROGRESS_PER_SECOND = 2
PROCESSING_PROGRESS_CEILING = 90
COMPLETED_PROGRESS = 100

PUSH_READ_TIMEOUT_SECONDS = 1.0

WEBHOOK_SIGNATURE_HEADER = "X-Webhook-Signature"
USER_AGENT = "EnhanceResolver/1.0"
