"""Application ports (interfaces) used by the application layer."""

from .metadata_source_port import CitingWorksPort, MetadataSourcePort
from .paper_store_port import DuplicatePaperError, PaperStoreError, PaperStorePort

__all__ = [
    "CitingWorksPort",
    "MetadataSourcePort",
    "PaperStorePort",
    "PaperStoreError",
    "DuplicatePaperError",
]
