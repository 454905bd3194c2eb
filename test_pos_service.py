import io
import json
import tempfile
import unittest
from contextlib import redirect_stdout
from datetime import datetime, timezone
from pathlib import Path
from unittest import mock

import pos_service as ps
from pos_errors import (
    DeviceUnavailable,
    InsufficientStock,
    InvalidInput,
    NotFound,
    StorageFailure,
    UnknownProduct,
)
from pos_store import InventoryLedger, JsonFileStore, MemoryStore, SalesLedger

FIXED_NOW = datetime(2024, 5, 2, 9, 30, 0, tzinfo=timezone.utc)


class RecordingPrinter:
    def __init__(self, fail=False):
        self.jobs = []
        self.fail = fail

    def send(self, commands):
        if self.fail:
            raise DeviceUnavailable("unplugged")
        self.jobs.append(commands)


class SaleServiceTest(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.receipts = Path(self._tmp.name) / "receipts"
        self.printer = RecordingPrinter()

    def tearDown(self):
        self._tmp.cleanup()

    def _service(self, products, sales=None, **kwargs):
        self.store = MemoryStore({"inv": products, "sales": sales or []})
        return ps.SaleService(
            InventoryLedger(self.store, "inv"),
            SalesLedger(self.store, "sales", clock=lambda: FIXED_NOW),
            receipts_dir=str(self.receipts),
            printer=self.printer,
            **kwargs,
        )

    def test_sale_decrements_stock_and_appends_once(self):
        service = self._service([{"id": 1, "name": "Coffee", "price": 4.5, "stock": 5}])
        sale = service.record_sale({"items": [{"id": 1, "cantidad": 3}], "total": 13.5})

        self.assertEqual(self.store.documents["inv"][0]["stock"], 2)
        self.assertEqual(len(self.store.documents["sales"]), 1)
        stored = self.store.documents["sales"][0]
        self.assertEqual(stored["total"], 13.5)
        self.assertEqual(stored["id"], 1)
        self.assertEqual(stored["date"], FIXED_NOW.isoformat())
        self.assertEqual(sale, stored)
        self.assertEqual(stored["items"], [{
            "product_id": 1,
            "name": "Coffee",
            "quantity": 3,
            "unit_price": 4.5,
            "subtotal": 13.5,
        }])

    def test_insufficient_stock_leaves_inventory_untouched(self):
        service = self._service([{"id": 1, "name": "Coffee", "price": 4.5, "stock": 1}])
        with self.assertRaises(InsufficientStock) as ctx:
            service.record_sale({"items": [{"id": 1, "cantidad": 2}]})
        self.assertEqual(ctx.exception.shortages[0]["available"], 1)
        self.assertEqual(self.store.documents["inv"][0]["stock"], 1)
        self.assertEqual(self.store.writes, [])
        self.assertFalse(self.receipts.exists())

    def test_one_short_item_rejects_the_whole_batch(self):
        service = self._service([
            {"id": 1, "name": "A", "price": 1, "stock": 10},
            {"id": 2, "name": "B", "price": 1, "stock": 0},
        ])
        with self.assertRaises(InsufficientStock):
            service.record_sale({"items": [
                {"product_id": 1, "quantity": 4},
                {"product_id": 2, "quantity": 1},
            ]})
        self.assertEqual([p["stock"] for p in self.store.documents["inv"]], [10, 0])
        self.assertEqual(self.store.writes, [])

    def test_repeated_lines_are_checked_against_combined_quantity(self):
        service = self._service([{"id": 1, "name": "A", "price": 1, "stock": 3}])
        with self.assertRaises(InsufficientStock):
            service.record_sale({"items": [
                {"product_id": 1, "quantity": 2},
                {"product_id": 1, "quantity": 2},
            ]})
        self.assertEqual(self.store.documents["inv"][0]["stock"], 3)

    def test_unknown_product_rejects_sale(self):
        service = self._service([{"id": 1, "name": "A", "price": 1, "stock": 3}])
        with self.assertRaises(UnknownProduct):
            service.record_sale({"items": [{"product_id": 1, "quantity": 1}, {"product_id": 8, "quantity": 1}]})
        self.assertEqual(self.store.writes, [])

    def test_non_numeric_stock_counts_as_none_available(self):
        service = self._service([{"id": 1, "name": "A", "price": 1, "stock": "n/a"}])
        with self.assertRaises(InsufficientStock) as ctx:
            service.record_sale({"items": [{"product_id": 1, "quantity": 1}]})
        self.assertEqual(ctx.exception.shortages[0]["available"], 0)
        self.assertEqual(self.store.writes, [])

    def test_missing_body_or_items_is_invalid_input(self):
        service = self._service([{"id": 1, "name": "A", "price": 1, "stock": 3}])
        for body in (None, {}, {"items": []}, {"items": "1"}, [1, 2]):
            with self.assertRaises(InvalidInput):
                service.record_sale(body)
        self.assertEqual(self.store.writes, [])

    def test_bad_item_fields_are_invalid_input(self):
        service = self._service([{"id": 1, "name": "A", "price": 1, "stock": 3}])
        for item in ({"quantity": 1}, {"id": 1, "quantity": 0}, {"id": 1, "quantity": "two"},
                     {"id": 1, "quantity": 1.5}, {"id": 1, "quantity": 1, "unit_price": "free"}, "1"):
            with self.assertRaises(InvalidInput):
                service.record_sale({"items": [item]})
        self.assertEqual(self.store.writes, [])
        self.assertEqual(self.store.documents["inv"][0]["stock"], 3)

    def test_totals_are_computed_with_tax(self):
        service = self._service([{"id": 1, "name": "Widget", "price": 10, "stock": 5}], tax_percentage=21)
        sale = service.record_sale({"items": [{"product_id": 1, "quantity": 2}], "medioPago": "Card"})
        self.assertEqual(sale["subtotal"], 20.0)
        self.assertEqual(sale["total"], 24.2)
        self.assertEqual(sale["tax_percentage"], 21)
        self.assertEqual(sale["payment_method"], "Card")

    def test_default_payment_method(self):
        service = self._service([{"id": 1, "name": "A", "price": 1, "stock": 5}], default_payment="Efectivo")
        sale = service.record_sale({"items": [{"product_id": 1, "quantity": 1}]})
        self.assertEqual(sale["payment_method"], "Efectivo")

    def test_duplicate_sale_id_is_rejected(self):
        service = self._service([{"id": 1, "name": "A", "price": 1, "stock": 5}], sales=[{"id": 3}])
        with self.assertRaises(InvalidInput):
            service.record_sale({"id": 3, "items": [{"product_id": 1, "quantity": 1}]})
        self.assertEqual(self.store.documents["inv"][0]["stock"], 5)

    def test_text_receipt_written_per_sale(self):
        service = self._service([{"id": 1, "name": "Coffee", "price": 4.5, "stock": 5}])
        sale = service.record_sale({"items": [{"product_id": 1, "quantity": 1}]})
        ticket = self.receipts / f"ticket_{sale['id']}.txt"
        self.assertTrue(ticket.exists())
        self.assertIn("Coffee", ticket.read_text(encoding="utf-8"))

    def test_receipt_failure_does_not_fail_sale(self):
        blocker = Path(self._tmp.name) / "not_a_dir"
        blocker.write_text("x", encoding="utf-8")
        service = self._service([{"id": 1, "name": "A", "price": 1, "stock": 5}])
        service.receipts_dir = str(blocker)
        sale = service.record_sale({"items": [{"product_id": 1, "quantity": 1}]})
        self.assertEqual(sale["id"], 1)
        self.assertEqual(len(self.store.documents["sales"]), 1)

    def test_failed_writes_are_logged_not_raised(self):
        service = self._service([{"id": 1, "name": "A", "price": 1, "stock": 5}])
        self.store.fail_writes = True
        with self.assertLogs("pos_service", level="ERROR"):
            sale = service.record_sale({"items": [{"product_id": 1, "quantity": 1}]})
        self.assertEqual(sale["id"], 1)
        self.assertEqual(self.store.writes, ["inv", "sales"])

    def test_print_sale_sends_thermal_ticket(self):
        service = self._service([], sales=[{"id": 5, "items": [], "total": 1, "subtotal": 1}])
        self.assertTrue(service.print_sale("5"))
        commands = self.printer.jobs[0]
        self.assertEqual(commands[-2:], [{"op": "cut"}, {"op": "close"}])

    def test_print_sale_unknown_id_and_missing_device(self):
        service = self._service([], sales=[{"id": 5, "items": []}])
        with self.assertRaises(NotFound):
            service.print_sale(6)
        self.printer.fail = True
        with self.assertLogs("pos_service", level="WARNING"):
            self.assertFalse(service.print_sale(5))

    def test_queries(self):
        sales = [
            {"id": 1, "date": "2024-05-01T23:59:59Z", "total": 3},
            {"id": 2, "date": "2024-05-02T09:00:00Z", "total": 4},
            {"id": 3, "date": "2024-05-02T10:00:00Z", "total": 5},
            {"id": 4, "date": "2024-05-02T11:00:00Z", "total": 6},
        ]
        service = self._service([{"id": 1, "name": "A"}], sales=sales)
        self.assertEqual(len(service.list_inventory()), 1)
        self.assertEqual(len(service.list_sales()), 4)
        self.assertEqual([s["id"] for s in service.recent_sales()], [4, 3, 2])
        self.assertEqual(service.daily_total(FIXED_NOW, timezone.utc), {"total": 15.0, "count": 3})

    def test_add_product(self):
        service = self._service([{"id": 1, "name": "A"}, {"id": 3, "name": "B"}])
        self.assertEqual(service.add_product({"name": "X", "price": 10, "stock": 0})["id"], 4)

    def test_health_reports_unreadable_ledgers(self):
        tmp = Path(self._tmp.name)
        (tmp / "sales.json").write_text("[oops", encoding="utf-8")
        store = JsonFileStore()
        service = ps.SaleService(
            InventoryLedger(store, str(tmp / "inventory.json")),
            SalesLedger(store, str(tmp / "sales.json")),
        )
        status = service.health()
        self.assertEqual(status["inventory"], "ok")
        self.assertIn("Invalid JSON", status["sales"])

    def test_corrupt_sales_document_survives_rejected_sale(self):
        tmp = Path(self._tmp.name)
        inventory = tmp / "inventory.json"
        sales = tmp / "sales.json"
        inventory.write_text(json.dumps([{"id": 1, "name": "A", "price": 1, "stock": 5}]), encoding="utf-8")
        truncated = '[{"id": 1, "total": 10}, {"id": 2, "total": 20},'
        sales.write_text(truncated, encoding="utf-8")
        store = JsonFileStore()
        service = ps.SaleService(
            InventoryLedger(store, str(inventory)),
            SalesLedger(store, str(sales)),
            receipts_dir=str(self.receipts),
        )
        with self.assertRaises(StorageFailure):
            service.record_sale({"items": [{"id": 1, "cantidad": 1}]})
        self.assertEqual(sales.read_text(encoding="utf-8"), truncated)
        self.assertEqual(json.loads(inventory.read_text(encoding="utf-8"))[0]["stock"], 5)
        self.assertFalse(self.receipts.exists())


class AdminCliTest(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)

    def tearDown(self):
        self._tmp.cleanup()

    def _run(self, *args):
        base = [
            "--inventory", str(self.root / "inventory.json"),
            "--sales", str(self.root / "sales.json"),
            "--receipts", str(self.root / "receipts"),
        ]
        out = io.StringIO()
        with mock.patch.dict("os.environ", {"POS_PRINTER": "none"}), redirect_stdout(out):
            code = ps.main(base + list(args))
        return code, out.getvalue()

    def test_seed_and_demo_sale(self):
        code, _ = self._run("--seed", "--demo-sale")
        self.assertEqual(code, 0)
        inventory = json.loads((self.root / "inventory.json").read_text(encoding="utf-8"))
        sales = json.loads((self.root / "sales.json").read_text(encoding="utf-8"))
        self.assertEqual(len(inventory), len(ps.DEMO_PRODUCTS))
        self.assertEqual(inventory[0]["stock"], ps.DEMO_PRODUCTS[0]["stock"] - 1)
        self.assertEqual(len(sales), 1)
        self.assertTrue((self.root / "receipts" / "ticket_1.txt").exists())

    def test_add_product_and_print_without_printer(self):
        code, out = self._run("--add-product", "Tea", "2.5", "7")
        self.assertEqual(code, 0)
        self.assertEqual(json.loads(out)["id"], 1)
        code, _ = self._run("--print", "99")
        self.assertEqual(code, 1)

    def test_demo_sale_on_empty_inventory_fails(self):
        code, _ = self._run("--demo-sale")
        self.assertEqual(code, 1)


if __name__ == "__main__":
    unittest.main()
