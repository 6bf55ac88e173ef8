from typing import Optional, Protocol, runtime_checkable

from autoprint.domain.models import InspectionResult, PrintOptions, SubmitResult

@runtime_checkable
class DocumentInspector(Protocol):
    async def inspect(self, location: str) -> InspectionResult:
        """Page count and cost for a stored document.
        Raises UnsupportedFormatError or CorruptDocumentError."""
        ...

    async def prepare_for_print(self, location: str) -> str:
        """Location of a printer-ready rendition (e.g. image converted to PDF)."""
        ...

@runtime_checkable
class PrinterDriver(Protocol):
    async def submit(self, location: str, printer_name: str, options: PrintOptions) -> SubmitResult:
        """Fire-and-forget submission. Reports acceptance only, never completion."""
        ...

@runtime_checkable
class MessagingChannel(Protocol):
    async def send(self, payer_identity: str, text: str) -> bool:
        ...

    async def send_file(self, payer_identity: str, location: str, caption: Optional[str] = None) -> bool:
        ...
