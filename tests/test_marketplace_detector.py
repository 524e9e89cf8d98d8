import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from services.marketplace_detector import detect, read_csv, score_headers, suggest_import_type


AMAZON_LEDGER = (
    "Date,FNSKU,ASIN,MSKU,Title,Event Type,Fulfillment Center,Quantity\n"
    "2025-01-01,X001,B0ABC,TS-RED-M,Red Tee,Receipts,BLR7,10\n"
)


def test_amazon_headers_detected_with_high_confidence():
    result = detect(AMAZON_LEDGER, "report.csv")
    assert result.marketplace == "Amazon"
    assert result.confidence >= 0.8
    assert result.note is None
    assert result.suggested_import_type == "inventory"
    assert result.sample_rows[0]["MSKU"] == "TS-RED-M"


def test_four_of_five_amazon_keywords_is_enough():
    content = "ASIN,FNSKU,MSKU,Fulfillment Center,Qty\nB0,X1,M1,BLR7,3\n"
    result = detect(content)
    assert result.marketplace == "Amazon"
    assert result.confidence >= 0.8


def test_meesho_headers():
    content = "Sub Order No,Order Date,Customer State,Product Name,SKU,Quantity\n1,2025-01-01,KA,Tee,M1,1\n"
    result = detect(content, "orders.csv")
    assert result.marketplace == "Meesho"
    assert result.suggested_import_type == "orders"


def test_filename_hint_raises_low_confidence():
    content = "Order Id,SKU,Quantity\nOD1,FK1,1\n"
    scores = score_headers(["Order Id", "SKU", "Quantity"])
    assert scores["Flipkart"] < 0.8

    result = detect(content, "FK_orders_jan.csv")
    assert result.marketplace == "Flipkart"
    assert result.confidence == 0.7


def test_filename_hint_for_headers_with_no_keywords():
    result = detect("col_a,col_b\n1,2\n", "meesho-export.csv")
    assert result.marketplace == "Meesho"
    assert result.confidence == 0.7
    assert result.note == "detected from filename"


def test_unknown_without_keywords_or_hint():
    result = detect("col_a,col_b\n1,2\n", "export.csv")
    assert result.marketplace == "Unknown"
    assert result.confidence == 0.0


def test_ties_go_to_first_registered_marketplace():
    # one Amazon keyword (1/5) vs one Meesho keyword (1/5)
    result = detect("ASIN,Customer State\nB0,KA\n")
    assert result.marketplace == "Amazon"


def test_malformed_csv_falls_back_to_filename():
    content = 'Order Id,SKU\n"OD1,FK1\n'
    result = detect(content, "flipkart.csv")
    assert result.marketplace == "Flipkart"
    assert result.confidence == 0.7
    assert "could not be parsed" in result.note


def test_empty_file_never_raises():
    result = detect("", "amazon.csv")
    assert result.marketplace == "Unknown"
    assert result.confidence == 0.0
    assert result.note == "empty file"


def test_read_csv_handles_quotes_bom_and_blank_lines():
    content = '\ufeffOrder Id , Product\n"OD1","Tee, red\nsize M"\n\n"OD2",Mug\n'
    headers, rows = read_csv(content)
    assert headers == ["Order Id", "Product"]
    assert rows == [
        {"Order Id": "OD1", "Product": "Tee, red\nsize M"},
        {"Order Id": "OD2", "Product": "Mug"},
    ]


def test_suggest_import_type_products():
    assert suggest_import_type(["MSKU", "Product Name", "Category"]) == "products"
    assert suggest_import_type(["whatever"]) == "orders"
