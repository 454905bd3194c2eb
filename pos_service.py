#!/usr/bin/env python3
# POS core: sale recording over flat JSON ledgers, receipts and an admin CLI
import argparse
import json
import logging
import sys
from collections import Counter
from datetime import datetime, tzinfo
from typing import Any, Dict, List, Optional, Tuple

from pos_config import PosConfig
from pos_errors import (
    DeviceUnavailable,
    InsufficientStock,
    InvalidInput,
    NotFound,
    StorageFailure,
    UnknownProduct,
)
from pos_store import InventoryLedger, JsonFileStore, SalesLedger
from receipt_printer import NullPrinter, printer_from_config
from receipts import render_thermal, write_text_receipt

log = logging.getLogger(__name__)

DEMO_PRODUCTS = [
    {'name': 'Coffee 250g', 'price': 4.5, 'stock': 20},
    {'name': 'Sugar 1kg', 'price': 1.2, 'stock': 35},
    {'name': 'Milk 1L', 'price': 0.95, 'stock': 48},
]


def _positive_int(value: Any, label: str) -> int:
    if isinstance(value, bool):
        raise InvalidInput(f"{label} must be a positive integer")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise InvalidInput(f"{label} must be a positive integer")
    if number <= 0 or not number.is_integer():
        raise InvalidInput(f"{label} must be a positive integer")
    return int(number)


def _number(value: Any, label: str) -> float:
    if isinstance(value, bool):
        raise InvalidInput(f"{label} must be a number")
    try:
        return float(value)
    except (TypeError, ValueError):
        raise InvalidInput(f"{label} must be a number")


def _first_present(data: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = data.get(key)
        if value not in (None, ''):
            return value
    return None


class SaleService:
    """Sale recording plus the read-only queries served by the HTTP layer."""

    def __init__(
        self,
        inventory: InventoryLedger,
        sales: SalesLedger,
        receipts_dir: Optional[str] = 'receipts',
        printer=None,
        shop_name: str = 'POINT OF SALE',
        tax_percentage: float = 0.0,
        default_payment: str = 'Cash',
        receipt_width: int = 40,
    ):
        self.inventory = inventory
        self.sales = sales
        self.receipts_dir = receipts_dir
        self.printer = printer or NullPrinter()
        self.shop_name = shop_name
        self.tax_percentage = tax_percentage
        self.default_payment = default_payment
        self.receipt_width = receipt_width

    # ---- queries ----

    def list_inventory(self) -> List[Dict[str, Any]]:
        return self.inventory.list()

    def list_sales(self) -> List[Dict[str, Any]]:
        return self.sales.list()

    def recent_sales(self, n: int = 3) -> List[Dict[str, Any]]:
        return self.sales.recent(n)

    def daily_total(self, reference: Optional[datetime] = None, tz: Optional[tzinfo] = None) -> Dict[str, Any]:
        return self.sales.same_day_total(reference, tz)

    def health(self) -> Dict[str, str]:
        """Per-ledger status; unlike list_* this does not mask storage errors."""
        out = {}
        for label, ledger in (('inventory', self.inventory), ('sales', self.sales)):
            try:
                ledger.store.read_strict(ledger.path)
                out[label] = 'ok'
            except StorageFailure as exc:
                out[label] = str(exc)
        return out

    # ---- mutations ----

    def add_product(self, product: Dict[str, Any]) -> Dict[str, Any]:
        record = self.inventory.add(product)
        log.info("Added product %s (%s)", record['id'], record['name'])
        return record

    def record_sale(self, data: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        if not isinstance(data, dict):
            raise InvalidInput('Invalid sale data')
        items = data.get('items')
        if not isinstance(items, list) or not items:
            raise InvalidInput('Sale items are required')
        requested = self._parse_items(items)

        # Mutations build on strict reads: an unreadable ledger must never be rewritten from [].
        products = self.inventory.snapshot()
        sales = self.sales.snapshot()
        wanted: Counter = Counter()
        for product_id, qty, _ in requested:
            wanted[product_id] += qty

        # Validate every line against the untouched snapshot before mutating anything.
        missing = [pid for pid in wanted if self.inventory.find_by_id(pid, products) is None]
        if missing:
            raise UnknownProduct(f"Unknown product id(s): {', '.join(str(pid) for pid in missing)}")
        shortages = []
        for product_id, qty in wanted.items():
            prod = self.inventory.find_by_id(product_id, products)
            available = self.inventory.stock_of(prod)
            if available < qty:
                shortages.append({
                    'product_id': product_id,
                    'name': prod.get('name'),
                    'requested': qty,
                    'available': available,
                })
        if shortages:
            log.info("Sale rejected, insufficient stock: %s", shortages)
            raise InsufficientStock('Insufficient stock', shortages)

        sale = self._build_sale(data, requested, products, sales)

        for product_id, qty in wanted.items():
            self.inventory.decrement_stock(products, product_id, qty)
        if not self.inventory.save(products):
            log.error("Inventory could not be saved; stock and sales ledgers may now disagree")

        sale = self.sales.append(sale, sales)
        self._write_receipt(sale)
        log.info("Recorded sale %s: %d line(s), total %.2f", sale['id'], len(sale['items']), sale['total'])
        return sale

    def print_sale(self, sale_id: Any) -> bool:
        """Send a stored sale to the thermal printer. False when no device took it."""
        sale = self.sales.find_by_id(sale_id)
        if sale is None:
            raise NotFound(f"Sale {sale_id} not found")
        try:
            self.printer.send(render_thermal(sale, self.shop_name))
        except DeviceUnavailable as exc:
            log.warning("Receipt for sale %s not printed: %s", sale_id, exc)
            return False
        log.info("Printed receipt for sale %s", sale_id)
        return True

    # ---- helpers ----

    def _parse_items(self, items: List[Any]) -> List[Tuple[int, int, Dict[str, Any]]]:
        out = []
        for idx, item in enumerate(items, start=1):
            if not isinstance(item, dict):
                raise InvalidInput(f"Item {idx} must be an object")
            product_id = _first_present(item, 'product_id', 'id')
            if product_id is None:
                raise InvalidInput(f"Item {idx} has no product id")
            product_id = _positive_int(product_id, f"Item {idx} product id")
            qty = _positive_int(_first_present(item, 'quantity', 'cantidad', 'qty'), f"Item {idx} quantity")
            out.append((product_id, qty, item))
        return out

    def _build_sale(
        self,
        data: Dict[str, Any],
        requested: List[Tuple[int, int, Dict[str, Any]]],
        products: List[Dict[str, Any]],
        sales: List[Dict[str, Any]],
    ) -> Dict[str, Any]:
        lines = []
        for product_id, qty, raw in requested:
            prod = self.inventory.find_by_id(product_id, products)
            price = _first_present(raw, 'unit_price', 'precio', 'price')
            unit_price = _number(prod.get('price', 0) if price is None else price, 'Unit price')
            line_subtotal = raw.get('subtotal')
            lines.append({
                'product_id': product_id,
                'name': _first_present(raw, 'name', 'nombre') or prod.get('name') or '',
                'quantity': qty,
                'unit_price': unit_price,
                'subtotal': round(qty * unit_price, 2) if line_subtotal is None else _number(line_subtotal, 'Line subtotal'),
            })

        subtotal = data.get('subtotal')
        subtotal = round(sum(line['subtotal'] for line in lines), 2) if subtotal is None else _number(subtotal, 'Subtotal')
        tax = data.get('tax_percentage')
        tax = self.tax_percentage if tax is None else _number(tax, 'Tax percentage')
        total = data.get('total')
        total = round(subtotal * (1 + tax / 100.0), 2) if total is None else _number(total, 'Total')

        sale: Dict[str, Any] = {}
        sale_id = data.get('id')
        if sale_id not in (None, ''):
            sale_id = _positive_int(sale_id, 'Sale id')
            if self.sales.find_by_id(sale_id, sales) is not None:
                raise InvalidInput(f"Sale id {sale_id} already exists")
            sale['id'] = sale_id
        date_value = _first_present(data, 'date', 'fecha')
        if date_value is not None:
            sale['date'] = str(date_value)
        sale.update({
            'payment_method': _first_present(data, 'payment_method', 'medioPago') or self.default_payment,
            'items': lines,
            'subtotal': subtotal,
            'total': total,
            'tax_percentage': tax,
        })
        return sale

    def _write_receipt(self, sale: Dict[str, Any]) -> None:
        if not self.receipts_dir:
            return
        try:
            path = write_text_receipt(sale, self.receipts_dir, self.shop_name, self.receipt_width)
        except OSError as exc:
            log.error("Receipt for sale %s could not be written: %s", sale.get('id'), exc)
            return
        if path:
            log.info("Receipt written to %s", path)


def build_service(config: Optional[PosConfig] = None, store=None, printer=None) -> SaleService:
    config = config or PosConfig.from_env()
    store = store or JsonFileStore()
    return SaleService(
        InventoryLedger(store, config.inventory_file),
        SalesLedger(store, config.sales_file),
        receipts_dir=config.receipts_dir,
        printer=printer or printer_from_config(config),
        shop_name=config.shop_name,
        tax_percentage=config.tax_percentage,
        default_payment=config.default_payment,
        receipt_width=config.receipt_width,
    )


def demo_seed(service: SaleService) -> List[Dict[str, Any]]:
    if service.list_inventory():
        log.info("Inventory already has products; demo seed skipped")
        return []
    return [service.add_product(dict(p)) for p in DEMO_PRODUCTS]


def demo_sale(service: SaleService) -> Dict[str, Any]:
    for prod in service.list_inventory():
        if service.inventory.stock_of(prod) > 0:
            return service.record_sale({'items': [{'product_id': prod['id'], 'quantity': 1}]})
    raise InsufficientStock('No product has stock for a demo sale')


def _emit(value: Any) -> None:
    print(json.dumps(value, ensure_ascii=False, indent=2))


def main(argv: Optional[List[str]] = None) -> int:
    ap = argparse.ArgumentParser(description="Flat-file POS admin")
    ap.add_argument("--inventory", help="Path to the inventory JSON document")
    ap.add_argument("--sales", help="Path to the sales JSON document")
    ap.add_argument("--receipts", help="Directory for text receipts")
    ap.add_argument("--seed", action="store_true", help="Insert demo products into an empty inventory")
    ap.add_argument("--add-product", nargs=3, metavar=("NAME", "PRICE", "STOCK"), help="Add one product")
    ap.add_argument("--demo-sale", action="store_true", help="Sell one unit of the first product in stock")
    ap.add_argument("--recent", type=int, nargs="?", const=3, help="Show the N most recent sales")
    ap.add_argument("--daily-total", action="store_true", help="Show today's sales total")
    ap.add_argument("--print", dest="print_id", metavar="SALE_ID", help="Print a stored sale")
    args = ap.parse_args(argv)

    config = PosConfig.from_env()
    logging.basicConfig(level=getattr(logging, config.log_level, logging.INFO),
                        format="%(asctime)s %(levelname)s %(message)s")
    if args.inventory:
        config.inventory_file = args.inventory
    if args.sales:
        config.sales_file = args.sales
    if args.receipts:
        config.receipts_dir = args.receipts
    service = build_service(config)

    try:
        if args.seed:
            _emit(demo_seed(service))
        if args.add_product:
            name, price, stock = args.add_product
            _emit(service.add_product({
                'name': name,
                'price': _number(price, 'Price'),
                'stock': int(_number(stock, 'Stock')),
            }))
        if args.demo_sale:
            _emit(demo_sale(service))
        if args.recent is not None:
            _emit(service.recent_sales(args.recent))
        if args.daily_total:
            _emit(service.daily_total())
        if args.print_id:
            _emit({'success': True, 'printed': service.print_sale(args.print_id)})
    except (InvalidInput, InsufficientStock, NotFound, StorageFailure) as exc:
        log.error("%s", exc)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
