"""Error types for the deduplication pipeline.

Only InputError aborts an invocation. The others are caught at activity or
group granularity and reported.
"""


class DeduplicationError(RuntimeError):
    """Base exception for deduplication errors."""

    pass


class InputError(DeduplicationError):
    """Raised when the invocation input (user id) is missing or invalid."""

    pass


class ComparatorError(DeduplicationError):
    """Raised when an activity lacks the fields required for comparison.

    Attributes:
        activity_id: Activity that cannot be compared
        missing: Names of the missing fields
    """

    def __init__(self, activity_id: str, missing: list[str]) -> None:
        self.activity_id = activity_id
        self.missing = missing
        super().__init__(f"Activity {activity_id} missing required fields: {', '.join(missing)}")


class NotFoundError(DeduplicationError):
    """Raised when an activity disappeared between load and merge."""

    def __init__(self, activity_id: str) -> None:
        self.activity_id = activity_id
        super().__init__(f"Activity {activity_id} not found")


class TransactionError(DeduplicationError):
    """Raised when persistence fails while merging one group.

    Attributes:
        canonical_id: Canonical activity of the failed group
        original_error: Underlying persistence exception
    """

    def __init__(self, canonical_id: str, original_error: Exception) -> None:
        self.canonical_id = canonical_id
        self.original_error = original_error
        super().__init__(f"Merge of group {canonical_id} failed: {original_error}")
