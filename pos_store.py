"""
Flat-file persistence for the POS: whole-document JSON reads and rewrites,
plus the inventory and sales ledgers built on top of it.

There is no locking. Two writers racing on the same document lose updates.
"""
import copy
import json as _json
import logging
from datetime import date, datetime, tzinfo
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from pos_errors import InvalidInput, StorageFailure

log = logging.getLogger(__name__)

Record = Dict[str, Any]


class JsonFileStore:
    """Read/write named JSON list documents on the local filesystem."""

    def read(self, path: str) -> List[Record]:
        try:
            return self.read_strict(path)
        except StorageFailure as exc:
            log.warning("Reading %s failed, treating it as empty: %s", path, exc)
            return []

    def read_strict(self, path: str) -> List[Record]:
        target = Path(path)
        try:
            if not target.exists():
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_text('[]', encoding='utf-8')
                log.info("Created empty document %s", target)
                return []
            raw = target.read_text(encoding='utf-8')
        except OSError as exc:
            raise StorageFailure(f"Cannot access {path}: {exc}") from exc
        if not raw.strip():
            return []
        try:
            data = _json.loads(raw)
        except ValueError as exc:
            raise StorageFailure(f"Invalid JSON in {path}: {exc}") from exc
        if not isinstance(data, list):
            raise StorageFailure(f"{path} does not hold a JSON list")
        return data

    def write(self, path: str, records: List[Record]) -> bool:
        target = Path(path)
        try:
            text = _json.dumps(records, ensure_ascii=False, indent=2)
        except (TypeError, ValueError) as exc:
            log.error("Cannot serialize %s, document left untouched: %s", path, exc)
            return False
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(text, encoding='utf-8')
        except OSError as exc:
            log.error("Writing %s failed: %s", path, exc)
            return False
        return True


class MemoryStore:
    """In-memory stand-in for JsonFileStore. Keeps a log of every write."""

    def __init__(self, documents: Optional[Dict[str, List[Record]]] = None):
        self.documents = copy.deepcopy(documents or {})
        self.writes: List[str] = []
        self.fail_writes = False

    def read(self, path: str) -> List[Record]:
        return self.read_strict(path)

    def read_strict(self, path: str) -> List[Record]:
        return copy.deepcopy(self.documents.setdefault(path, []))

    def write(self, path: str, records: List[Record]) -> bool:
        self.writes.append(path)
        if self.fail_writes:
            return False
        self.documents[path] = copy.deepcopy(records)
        return True


def next_sequential_id(records: List[Record]) -> int:
    """max(existing integer ids) + 1, starting at 1 for an empty ledger."""
    highest = 0
    for rec in records:
        try:
            value = int(rec.get('id'))
        except (TypeError, ValueError):
            continue
        if value > highest:
            highest = value
    return highest + 1


def local_now() -> datetime:
    return datetime.now().astimezone()


def parse_timestamp(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    if text.endswith('Z'):
        text = text[:-1] + '+00:00'
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None


def calendar_day(value: datetime, tz: Optional[tzinfo] = None) -> date:
    """Calendar date of `value` in `tz` (system local time when None). Naive values count as local."""
    if value.tzinfo is None:
        value = value.astimezone()
    return value.astimezone(tz).date()


def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


class InventoryLedger:

    def __init__(self, store, path: str, id_factory: Callable[[List[Record]], int] = next_sequential_id):
        self.store = store
        self.path = path
        self.id_factory = id_factory

    def list(self) -> List[Record]:
        return self.store.read(self.path)

    def snapshot(self) -> List[Record]:
        """Like list(), but raises StorageFailure instead of masking an unreadable document."""
        return self.store.read_strict(self.path)

    def save(self, products: List[Record]) -> bool:
        return self.store.write(self.path, products)

    def find_by_id(self, product_id: Any, products: Optional[List[Record]] = None) -> Optional[Record]:
        wanted = _as_int(product_id)
        if wanted is None:
            return None
        for prod in self.list() if products is None else products:
            if _as_int(prod.get('id')) == wanted:
                return prod
        return None

    @staticmethod
    def stock_of(product: Record) -> int:
        return _as_int(product.get('stock')) or 0

    def decrement_stock(self, products: List[Record], product_id: Any, qty: int) -> Record:
        """Take `qty` units off the product inside `products`. The caller persists."""
        prod = self.find_by_id(product_id, products)
        if prod is None:
            raise KeyError(product_id)
        stock = self.stock_of(prod)
        if stock < qty:
            raise ValueError(f"Product {product_id} has {stock} in stock, {qty} requested")
        prod['stock'] = stock - qty
        return prod

    def add(self, product: Record) -> Record:
        if not isinstance(product, dict):
            raise InvalidInput('Product must be a JSON object')
        name = product.get('name') or product.get('nombre')
        if not isinstance(name, str) or not name.strip():
            raise InvalidInput('Product name is required')
        products = self.snapshot()
        record = dict(product)
        record.pop('nombre', None)
        record['name'] = name.strip()
        if record.get('id') in (None, ''):
            record['id'] = self.id_factory(products)
        else:
            product_id = _as_int(record['id'])
            if product_id is None or product_id <= 0:
                raise InvalidInput('Product id must be a positive integer')
            if self.find_by_id(product_id, products) is not None:
                raise InvalidInput(f'Product id {product_id} already exists')
            record['id'] = product_id
        record.setdefault('price', 0)
        record.setdefault('stock', 0)
        if (_as_int(record['stock']) or 0) < 0:
            raise InvalidInput('Stock cannot be negative')
        products.append(record)
        if not self.save(products):
            log.warning("Product %s added but the inventory could not be saved", record['id'])
        return record


class SalesLedger:

    def __init__(
        self,
        store,
        path: str,
        id_factory: Callable[[List[Record]], int] = next_sequential_id,
        clock: Callable[[], datetime] = local_now,
    ):
        self.store = store
        self.path = path
        self.id_factory = id_factory
        self.clock = clock

    def list(self) -> List[Record]:
        return self.store.read(self.path)

    def snapshot(self) -> List[Record]:
        return self.store.read_strict(self.path)

    def find_by_id(self, sale_id: Any, sales: Optional[List[Record]] = None) -> Optional[Record]:
        wanted = _as_int(sale_id)
        if wanted is None:
            return None
        for sale in self.list() if sales is None else sales:
            if _as_int(sale.get('id')) == wanted:
                return sale
        return None

    def recent(self, n: int = 3) -> List[Record]:
        if n <= 0:
            return []
        return list(reversed(self.list()[-n:]))

    def same_day_total(self, reference: Optional[datetime] = None, tz: Optional[tzinfo] = None) -> Dict[str, Any]:
        day = calendar_day(reference or self.clock(), tz)
        total = 0.0
        count = 0
        for sale in self.list():
            stamp = parse_timestamp(sale.get('date'))
            if stamp is None or calendar_day(stamp, tz) != day:
                continue
            try:
                total += float(sale.get('total') or 0)
            except (TypeError, ValueError):
                log.warning("Sale %s has a non-numeric total", sale.get('id'))
                continue
            count += 1
        return {'total': round(total, 2), 'count': count}

    def append(self, sale: Record, sales: Optional[List[Record]] = None) -> Record:
        """Append to `sales` (read strictly when not given) and rewrite the document."""
        if sales is None:
            sales = self.snapshot()
        if sale.get('id') in (None, ''):
            sale['id'] = self.id_factory(sales)
        if not sale.get('date'):
            sale['date'] = self.clock().isoformat()
        sales.append(sale)
        if not self.save(sales):
            log.warning("Sale %s could not be saved to %s", sale['id'], self.path)
        return sale

    def save(self, sales: List[Record]) -> bool:
        return self.store.write(self.path, sales)

