"""OCR text extraction used by the fallback analysis path.

PDFs with a text layer are read with pdfplumber. Images are cleaned up with
Pillow and recognized with Tesseract via pytesseract. All library calls are
blocking and run in a worker thread.
"""

from __future__ import annotations

import asyncio
import io
import re
from typing import Any, Protocol

import pdfplumber
import pytesseract
from PIL import Image, ImageFilter, ImageOps

from doculens.core.errors import provider_error
from doculens.core.logging import get_logger
from doculens.documents.models import Coordinates, OCRQuality, OCRResult, WordBox

logger = get_logger(__name__)

PDF_TEXT_CONFIDENCE = 0.95
MIN_WORD_CONFIDENCE = 60.0
MAX_IMAGE_SIDE = 2000
LOW_CONFIDENCE_THRESHOLD = 0.7
MIN_TEXT_LENGTH = 10
MAX_SUSPECT_CHARACTERS = 10

_SUSPECT_CHARACTERS = re.compile(r"[^\w\s.,\-$%()]")


class OCRProvider(Protocol):
    """Contract for OCR integrations."""

    async def extract(self, content: bytes, mime_type: str) -> OCRResult:
        """Extract text from document bytes."""


class TesseractOCRProvider:
    """OCR provider backed by pdfplumber and Tesseract."""

    def __init__(self, language: str = "eng") -> None:
        self.language = language

    async def extract(self, content: bytes, mime_type: str) -> OCRResult:
        """Extract text from a PDF or image.

        Raises:
            DocumentError: kind PROVIDER for unsupported types or library failures.
        """
        logger.info("ocr_extraction_started", mime_type=mime_type, size=len(content))
        if mime_type == "application/pdf":
            extractor = self._extract_pdf
        elif mime_type.startswith("image/"):
            extractor = self._extract_image
        else:
            raise provider_error("ocr", f"Unsupported file type for OCR: {mime_type}")

        try:
            result = await asyncio.to_thread(extractor, content)
        except Exception as exc:
            raise provider_error("ocr", f"Failed to extract text: {exc}") from exc

        result.quality = assess_quality(result)
        logger.info(
            "ocr_extraction_completed",
            method=result.method,
            confidence=result.confidence,
            characters=len(result.text),
        )
        return result

    def _extract_pdf(self, content: bytes) -> OCRResult:
        with pdfplumber.open(io.BytesIO(content)) as pdf:
            pages = [page.extract_text() or "" for page in pdf.pages]
        return OCRResult(
            text="\n".join(pages).strip(),
            confidence=PDF_TEXT_CONFIDENCE,
            method="pdf_text_extraction",
            page_count=len(pages),
        )

    def _extract_image(self, content: bytes) -> OCRResult:
        with Image.open(io.BytesIO(content)) as image:
            prepared = preprocess_image(image)
        data = pytesseract.image_to_data(
            prepared,
            lang=self.language,
            output_type=pytesseract.Output.DICT,
        )
        text = pytesseract.image_to_string(prepared, lang=self.language)
        return OCRResult(
            text=text.strip(),
            confidence=_mean_confidence(data),
            method="tesseract_ocr",
            page_count=1,
            coordinates=_word_boxes(data),
        )


def preprocess_image(image: Image.Image) -> Image.Image:
    """Grayscale, stretch contrast, sharpen and bound the size of an image."""
    prepared = ImageOps.autocontrast(ImageOps.grayscale(image))
    prepared = prepared.filter(ImageFilter.SHARPEN)
    prepared.thumbnail((MAX_IMAGE_SIDE, MAX_IMAGE_SIDE))
    return prepared


def _word_confidences(data: dict[str, list[Any]]) -> list[float]:
    confidences = []
    for raw in data.get("conf", []):
        try:
            value = float(raw)
        except (TypeError, ValueError):
            continue
        if value >= 0:
            confidences.append(value)
    return confidences


def _mean_confidence(data: dict[str, list[Any]]) -> float:
    confidences = _word_confidences(data)
    if not confidences:
        return 0.0
    return round(sum(confidences) / len(confidences) / 100, 4)


def _word_boxes(data: dict[str, list[Any]]) -> list[WordBox]:
    boxes: list[WordBox] = []
    for index, text in enumerate(data.get("text", [])):
        if not str(text).strip():
            continue
        try:
            confidence = float(data["conf"][index])
        except (KeyError, IndexError, TypeError, ValueError):
            continue
        if confidence <= MIN_WORD_CONFIDENCE:
            continue
        boxes.append(
            WordBox(
                text=str(text),
                confidence=confidence / 100,
                bbox=Coordinates(
                    x=data["left"][index],
                    y=data["top"][index],
                    width=data["width"][index],
                    height=data["height"][index],
                ),
            )
        )
    return boxes


def assess_quality(result: OCRResult) -> OCRQuality:
    """Flag extractions that are unlikely to support field detection."""
    quality = OCRQuality()
    if result.confidence < LOW_CONFIDENCE_THRESHOLD:
        quality.is_valid = False
        quality.issues.append("Low OCR confidence")
        quality.recommendations.append("Try uploading a clearer image")

    if len(result.text.strip()) < MIN_TEXT_LENGTH:
        quality.is_valid = False
        quality.issues.append("Very little text extracted")
        quality.recommendations.append("Ensure document contains readable text")

    if len(_SUSPECT_CHARACTERS.findall(result.text)) > MAX_SUSPECT_CHARACTERS:
        quality.issues.append("Many special characters detected (possible OCR errors)")
        quality.recommendations.append("Try improving image quality or orientation")

    return quality
