"""
Files — File version import and verified transfers.
"""

from .importer import FileImporter
from .transfer import FileTransferManager, TransferResult

__all__ = ["FileImporter", "FileTransferManager", "TransferResult"]
