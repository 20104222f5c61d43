"""Object storage adapter and the temporary upload lifecycle."""

from .blob import BlobStore, SignedUrl, StorageBucket, StoredObject
from .uploads import EphemeralUploadManager, IncomingImage, PromotedImage, StagedUpload, SweepReport

__all__ = [
    "BlobStore",
    "EphemeralUploadManager",
    "IncomingImage",
    "PromotedImage",
    "SignedUrl",
    "StagedUpload",
    "StorageBucket",
    "StoredObject",
    "SweepReport",
]
