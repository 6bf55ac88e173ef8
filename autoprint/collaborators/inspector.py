import asyncio
import logging
from pathlib import Path

from PIL import Image, UnidentifiedImageError
from pypdf import PdfReader
from pypdf.errors import PdfReadError

from autoprint.domain.errors import CorruptDocumentError, UnsupportedFormatError
from autoprint.domain.models import InspectionResult

logger = logging.getLogger(__name__)

PDF_EXTENSIONS = {".pdf"}
IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".webp"}

class LocalDocumentInspector:
    """
    Inspects documents stored on the local filesystem.

    PDFs are counted page by page; images print on a single page and are
    converted to PDF before printing. Parsing runs in a thread so it never
    blocks the event loop.
    """

    def __init__(self, price_per_page: float, upload_dir: str = "./uploads"):
        self.price_per_page = price_per_page
        self.upload_dir = Path(upload_dir)

    def resolve(self, location: str) -> Path:
        # Public URLs look like /uploads/<name>; map them to the upload dir.
        if location.startswith("/uploads/"):
            return self.upload_dir / location[len("/uploads/"):]
        return Path(location)

    async def inspect(self, location: str) -> InspectionResult:
        path = self.resolve(location)
        if not path.exists():
            raise CorruptDocumentError(f"Document not found: {location}")

        suffix = path.suffix.lower()
        if suffix in PDF_EXTENSIONS:
            pages = await asyncio.to_thread(self._count_pdf_pages, path)
        elif suffix in IMAGE_EXTENSIONS:
            await asyncio.to_thread(self._verify_image, path)
            pages = 1
        else:
            raise UnsupportedFormatError(f"Unsupported file type: {suffix or 'unknown'}")

        logger.info(f"Inspected {path.name}: {pages} page(s)")
        return InspectionResult(
            page_count=pages,
            cost_estimate=pages * self.price_per_page,
            document_ref=str(path)
        )

    async def prepare_for_print(self, location: str) -> str:
        path = self.resolve(location)
        if path.suffix.lower() not in IMAGE_EXTENSIONS:
            return str(path)
        return await asyncio.to_thread(self._image_to_pdf, path)

    @staticmethod
    def _count_pdf_pages(path: Path) -> int:
        try:
            reader = PdfReader(str(path))
            pages = len(reader.pages)
        except (PdfReadError, OSError, ValueError) as e:
            raise CorruptDocumentError(f"Could not read PDF {path.name}: {e}") from e
        if pages < 1:
            raise CorruptDocumentError(f"PDF {path.name} has no pages")
        return pages

    @staticmethod
    def _verify_image(path: Path) -> None:
        try:
            with Image.open(path) as img:
                img.verify()
        except (UnidentifiedImageError, OSError) as e:
            raise CorruptDocumentError(f"Could not read image {path.name}: {e}") from e

    @staticmethod
    def _image_to_pdf(path: Path) -> str:
        target = path.with_suffix(".pdf")
        try:
            with Image.open(path) as img:
                img.convert("RGB").save(target, "PDF", resolution=150.0)
        except (UnidentifiedImageError, OSError) as e:
            raise CorruptDocumentError(f"Could not convert {path.name} to PDF: {e}") from e
        logger.info(f"Converted {path.name} to {target.name}")
        return str(target)
