class CapsuleError(Exception):
    """Base class for every failure raised by the capsule pipeline."""


class NotFound(CapsuleError):
    """Capsule row or its visible messages are absent."""


class FetchError(CapsuleError):
    """Remote media could not be downloaded."""


class AssetMissing(CapsuleError):
    """A required branding asset (e.g. the slide background) is missing."""


class RenderError(CapsuleError):
    """Compositing or encoding failed."""


class ConcatError(CapsuleError):
    """Segments cannot be joined (missing file or codec mismatch)."""


class PublishError(CapsuleError):
    """Upload or capsule row update failed."""


class QueueError(CapsuleError):
    """Queue RPC failed."""


class InvalidJob(CapsuleError):
    """Job payload can never be processed (e.g. no capsule_id)."""


class StoreError(CapsuleError):
    """Content store read failed (transport or HTTP error)."""
