"""Client-side access to the DocuLens API."""

from doculens.client.api import DocuLensClient
from doculens.client.poller import StatusPoller, StatusSnapshot

__all__ = [
    "DocuLensClient",
    "StatusPoller",
    "StatusSnapshot",
]
