"""
Marketplace Detector
Infers the source marketplace and import type of a CSV export from its headers and filename
"""
from __future__ import annotations

import csv
import io
import logging
import re
from dataclasses import dataclass, field, asdict
from typing import Dict, List, Optional, Tuple

from utils import clean_cell

logger = logging.getLogger(__name__)

UNKNOWN = "Unknown"
HINT_CONFIDENCE = 0.7
HINT_THRESHOLD = 0.8
SAMPLE_ROWS = 3

# Registration order is the tie-break order.
MARKETPLACE_KEYWORDS: Dict[str, Tuple[str, ...]] = {
    "Amazon": ("ASIN", "FNSKU", "MSKU", "Fulfillment Center", "Event Type"),
    "Flipkart": ("Order Id", "FSN", "SKU", "Ordered On", "Order State", "Shipment ID"),
    "Meesho": ("Sub Order No", "Order Date", "Customer State", "Product Name", "Reason for Credit Entry"),
}

FILENAME_HINTS: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("Amazon", ("amazon",)),
    ("Flipkart", ("flipkart", "fk")),
    ("Meesho", ("meesho",)),
)

IMPORT_TYPE_KEYWORDS: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("orders", ("orderid", "suborderno", "ordernumber", "purchasedate", "orderedon", "orderstate")),
    ("inventory", ("fulfillable", "availablequantity", "stock", "eventtype", "disposition", "inventory")),
    ("products", ("msku", "productname", "title", "category", "hsn", "description")),
)


@dataclass
class DetectionResult:
    marketplace: str
    confidence: float
    headers: List[str] = field(default_factory=list)
    sample_rows: List[Dict[str, str]] = field(default_factory=list)
    suggested_import_type: str = "orders"
    note: Optional[str] = None

    def to_dict(self) -> Dict[str, object]:
        payload = asdict(self)
        return {
            "marketplace": payload["marketplace"],
            "confidence": payload["confidence"],
            "headers": payload["headers"],
            "sampleRows": payload["sample_rows"],
            "suggestedImportType": payload["suggested_import_type"],
            "note": payload["note"],
        }


def score_headers(headers: List[str]) -> Dict[str, float]:
    """Fraction of each marketplace's keywords found as a substring of any header."""
    scores: Dict[str, float] = {}
    for marketplace, keywords in MARKETPLACE_KEYWORDS.items():
        found = sum(1 for kw in keywords if any(kw in header for header in headers))
        scores[marketplace] = found / len(keywords)
    return scores


def filename_hint(filename: Optional[str]) -> Optional[str]:
    name = (filename or "").lower()
    if not name:
        return None
    for marketplace, needles in FILENAME_HINTS:
        if any(needle in name for needle in needles):
            return marketplace
    return None


def suggest_import_type(headers: List[str]) -> str:
    canonical = [re.sub(r"[\s_\-]+", "", h.lower()) for h in headers]
    for import_type, needles in IMPORT_TYPE_KEYWORDS:
        if any(needle in h for h in canonical for needle in needles):
            return import_type
    return "orders"


def read_csv(content: str) -> Tuple[List[str], List[Dict[str, str]]]:
    """
    Parse CSV text into (headers, rows). Headers are stripped of whitespace and BOM;
    blank lines are dropped. Raises csv.Error on malformed input.
    """
    reader = csv.reader(io.StringIO(content), strict=True)
    headers: List[str] = []
    rows: List[Dict[str, str]] = []
    for record in reader:
        if not headers:
            if not any(clean_cell(c) for c in record):
                continue
            headers = [clean_cell(c) for c in record]
            continue
        if not any(clean_cell(c) for c in record):
            continue
        row = {}
        for idx, header in enumerate(headers):
            row[header] = clean_cell(record[idx]) if idx < len(record) else ""
        rows.append(row)
    return headers, rows


def detect(content: Optional[str], filename: Optional[str] = None) -> DetectionResult:
    """
    Best-guess marketplace for a CSV export. Never raises: malformed text falls back
    to the filename hint and low confidence is returned rather than rejected.
    """
    if not content or not content.strip():
        return DetectionResult(marketplace=UNKNOWN, confidence=0.0, note="empty file")

    try:
        headers, rows = read_csv(content)
    except csv.Error as e:
        logger.warning(f"Could not parse CSV for detection ({e}); using filename {filename!r}")
        hinted = filename_hint(filename)
        if hinted:
            return DetectionResult(
                marketplace=hinted,
                confidence=HINT_CONFIDENCE,
                note=f"detected from filename; CSV could not be parsed: {e}",
            )
        return DetectionResult(
            marketplace=UNKNOWN,
            confidence=0.0,
            note=f"CSV could not be parsed: {e}",
        )

    if not headers:
        return DetectionResult(marketplace=UNKNOWN, confidence=0.0, note="empty file")

    scores = score_headers(headers)
    best, best_score = UNKNOWN, 0.0
    for marketplace, score in scores.items():
        if score > best_score:
            best, best_score = marketplace, score

    note = None
    if best_score < HINT_THRESHOLD:
        hinted = filename_hint(filename)
        if hinted and hinted == best:
            best_score = max(best_score, HINT_CONFIDENCE)
            note = "confidence raised by filename"
        elif hinted and HINT_CONFIDENCE > best_score:
            best, best_score = hinted, HINT_CONFIDENCE
            note = "detected from filename"

    result = DetectionResult(
        marketplace=best,
        confidence=round(best_score, 4),
        headers=headers,
        sample_rows=rows[:SAMPLE_ROWS],
        suggested_import_type=suggest_import_type(headers),
        note=note,
    )
    logger.info(
        f"Detected marketplace={result.marketplace} confidence={result.confidence} "
        f"importType={result.suggested_import_type} filename={filename!r}"
    )
    return result
