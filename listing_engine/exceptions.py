"""
Exception Classes - Strongly typed exception hierarchy.

NO DICTIONARIES - All exceptions have typed attributes.

Admission denials (insufficient credits, expired trial) and channel
validation failures are NOT exceptions: they are returned as data.
"""

from uuid import UUID


class ListingEngineError(Exception):
    """Base exception for all listing engine errors."""

    pass


class AccountNotFoundError(ListingEngineError):
    """Raised when account doesn't exist."""

    def __init__(self, account_id: UUID) -> None:
        self.account_id = account_id
        super().__init__(f"Account not found: {account_id}")


class ListingNotFoundError(ListingEngineError):
    """Raised when a listing id is unknown."""

    def __init__(self, listing_id: UUID) -> None:
        self.listing_id = listing_id
        super().__init__(f"Listing not found: {listing_id}")


class ListingForbiddenError(ListingEngineError):
    """Raised when a listing exists but belongs to another account."""

    def __init__(self, listing_id: UUID, account_id: UUID) -> None:
        self.listing_id = listing_id
        self.account_id = account_id
        super().__init__(f"Account {account_id} may not access listing {listing_id}")


class UnknownChannelError(ListingEngineError):
    """Raised when a channel id or slug is not in the catalog."""

    def __init__(self, channel: str) -> None:
        self.channel = channel
        super().__init__(f"Unknown channel: {channel}")


class DuplicateImagePositionError(ListingEngineError):
    """Raised when two images claim the same explicit position."""

    def __init__(self, position: int) -> None:
        self.position = position
        super().__init__(f"Duplicate image position: {position}")


class DuplicateChannelOverrideError(ListingEngineError):
    """Raised when the same channel appears twice in one save."""

    def __init__(self, channel_id: str) -> None:
        self.channel_id = channel_id
        super().__init__(f"Duplicate channel override: {channel_id}")


class ChannelNotOnListingError(ListingEngineError):
    """Raised when exporting a channel the listing has no override for."""

    def __init__(self, listing_id: UUID, channel_id: str) -> None:
        self.listing_id = listing_id
        self.channel_id = channel_id
        super().__init__(f"Listing {listing_id} has no {channel_id} channel")


class ListingNotReadyError(ListingEngineError):
    """Raised when a channel export is blocked by validation errors."""

    def __init__(self, channel_id: str, errors: tuple[str, ...]) -> None:
        self.channel_id = channel_id
        self.errors = errors
        super().__init__(f"Listing not ready for {channel_id}: {len(errors)} error(s)")


class WriteVerificationError(ListingEngineError):
    """Raised when database write verification fails."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Write verification failed: {message}")


class DataIntegrityError(ListingEngineError):
    """Raised when data integrity constraint violated."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Data integrity error: {message}")


class DatabaseError(ListingEngineError):
    """Raised when database operation fails unexpectedly."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Database error: {message}")


class GenerationProviderError(ListingEngineError):
    """Raised when the external generation provider fails."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Generation provider error: {message}")


class WebhookVerificationError(ListingEngineError):
    """Raised when webhook verification fails."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Webhook verification error: {message}")


class AuthenticationError(ListingEngineError):
    """Raised when authentication fails (invalid API key)."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Authentication failed: {message}")
