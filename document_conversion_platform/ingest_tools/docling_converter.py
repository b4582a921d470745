"""
Docling converter backend - converts documents to markdown, html or json.
"""
import json
import logging
import threading
from pathlib import Path

from docling.document_converter import DocumentConverter

from document_conversion_platform.ingest_tools.converters import ConversionError

logger = logging.getLogger(__name__)


class DoclingConverter:
    SUPPORTED_EXTENSIONS = ("md", "html", "json")

    def __init__(self, converter=None):
        self.converter = converter or DocumentConverter()
        # One DocumentConverter holds the loaded models; calls are serialized
        self._lock = threading.Lock()

    def convert(self, source, target):
        source = Path(source)
        target = Path(target)
        target_extension = target.suffix.lstrip(".").lower()
        if target_extension not in self.SUPPORTED_EXTENSIONS:
            raise ConversionError(f"docling cannot export .{target_extension}")

        try:
            with self._lock:
                result = self.converter.convert(str(source))
        except Exception as e:
            raise ConversionError(f"docling failed to convert {source.name}: {e}") from e

        document = result.document
        if not document:
            raise ConversionError(f"docling returned no document for {source.name}")

        target.parent.mkdir(parents=True, exist_ok=True)
        if target_extension == "md":
            target.write_text(document.export_to_markdown(), encoding="utf-8")
        elif target_extension == "html":
            target.write_text(document.export_to_html(), encoding="utf-8")
        else:
            with open(target, 'w', encoding="utf-8") as f:
                json.dump(document.export_to_dict(), f, indent=4)

        logger.debug(f"stage=conversion event=docling_completed file={source.name} target={target.name}")
        return target
