"""Services built on top of the storage backends."""

from certmigrator.services.transfer import (
    TransferSummary,
    export_files,
    import_files,
)

__all__ = ["TransferSummary", "export_files", "import_files"]
