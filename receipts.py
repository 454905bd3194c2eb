"""
Receipt rendering.

Two renderers share the same finalized sale record:

* render_text / write_text_receipt produce the fixed-width ticket kept on disk
  for every sale (receipts/ticket_<id>.txt).
* render_thermal produces a list of printer primitives (plain dicts, so they
  can travel as JSON to the receipt agent); encode_escpos turns those into
  ESC/POS bytes for a serial thermal printer.
"""
import logging
import re
import unicodedata
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from pos_store import parse_timestamp

log = logging.getLogger(__name__)

ESC = b'\x1b'
GS = b'\x1d'
_ALIGN_CODES = {'left': 0, 'center': 1, 'right': 2}
_STYLE_CODES = {'normal': ESC + b'E\x00' + ESC + b'-\x00', 'bold': ESC + b'E\x01', 'underline': ESC + b'-\x01'}

Command = Dict[str, Any]


def _as_float(value: Any) -> float:
    if value in (None, '', False):
        return 0.0
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _money(value: Any) -> str:
    return f"{_as_float(value):,.2f}"


def _percent(value: Any) -> str:
    return f"{_as_float(value):g}%"


def _display_date(value: Any) -> str:
    stamp = parse_timestamp(value)
    if stamp is None:
        return str(value or '')
    return stamp.strftime('%Y-%m-%d %H:%M:%S')


def _two_columns(left: str, right: str, width: int) -> str:
    room = width - len(right) - 1
    if room < 1:
        return right[:width]
    return f"{left[:room].ljust(room)} {right}"


def render_text(sale: Dict[str, Any], shop_name: str = 'POINT OF SALE', width: int = 40) -> str:
    rule = '=' * width
    thin = '-' * width
    subtotal = _as_float(sale.get('subtotal'))
    total = _as_float(sale.get('total'))
    lines = [
        rule,
        shop_name[:width].center(width).rstrip(),
        rule,
        f"Ticket #: {sale.get('id')}",
        f"Date: {_display_date(sale.get('date'))}",
        f"Payment: {sale.get('payment_method') or 'Cash'}",
        thin,
    ]
    for item in sale.get('items') or []:
        name = str(item.get('name') or f"Product {item.get('product_id')}")
        lines.append(name[:width])
        detail = f"  {item.get('quantity')} x {_money(item.get('unit_price'))}"
        lines.append(_two_columns(detail, _money(item.get('subtotal')), width))
    lines.extend([
        thin,
        _two_columns('Subtotal', _money(subtotal), width),
        _two_columns(f"Tax ({_percent(sale.get('tax_percentage'))})", _money(total - subtotal), width),
        _two_columns('TOTAL', _money(total), width),
        rule,
        'Thank you for your purchase'.center(width).rstrip(),
        '',
    ])
    return '\n'.join(lines)


def receipt_filename(sale: Dict[str, Any]) -> str:
    raw = str(sale.get('id') or '')
    safe = ''.join(c for c in raw if c.isalnum() or c in ('-', '_'))
    if not safe:
        # Second resolution; two id-less receipts in the same second collide.
        safe = datetime.now().strftime('%Y%m%d%H%M%S')
    return f"ticket_{safe}.txt"


def write_text_receipt(
    sale: Dict[str, Any],
    directory: str,
    shop_name: str = 'POINT OF SALE',
    width: int = 40,
) -> Optional[Path]:
    """Write the text ticket. Returns None when a ticket for this sale already exists."""
    folder = Path(directory)
    folder.mkdir(parents=True, exist_ok=True)
    path = folder / receipt_filename(sale)
    try:
        with open(path, 'x', encoding='utf-8') as f:
            f.write(render_text(sale, shop_name, width))
    except FileExistsError:
        log.warning("Receipt %s already exists; leaving it untouched", path)
        return None
    return path


def _column(text: str, align: str, width: float) -> Dict[str, Any]:
    return {'text': text, 'align': align, 'width': width}


def render_thermal(sale: Dict[str, Any], shop_name: str = 'POINT OF SALE') -> List[Command]:
    rule = '-' * 32
    subtotal = _as_float(sale.get('subtotal'))
    total = _as_float(sale.get('total'))
    cmds: List[Command] = [
        {'op': 'align', 'value': 'center'},
        {'op': 'style', 'value': 'bold'},
        {'op': 'size', 'width': 2, 'height': 2},
        {'op': 'text', 'value': shop_name},
        {'op': 'size', 'width': 1, 'height': 1},
        {'op': 'style', 'value': 'normal'},
        {'op': 'text', 'value': rule},
        {'op': 'align', 'value': 'left'},
        {'op': 'text', 'value': f"Date: {_display_date(sale.get('date'))}"},
        {'op': 'text', 'value': f"Ticket ID: {sale.get('id')}"},
        {'op': 'text', 'value': f"Payment: {sale.get('payment_method') or 'Cash'}"},
        {'op': 'text', 'value': rule},
        {'op': 'table', 'columns': [
            _column('ITEM', 'left', 0.5),
            _column('QTY', 'center', 0.2),
            _column('AMOUNT', 'right', 0.3),
        ]},
    ]
    for item in sale.get('items') or []:
        name = str(item.get('name') or f"Product {item.get('product_id')}")
        cmds.append({'op': 'table', 'columns': [
            _column(name[:15], 'left', 0.5),
            _column(str(item.get('quantity')), 'center', 0.2),
            _column(f"{_as_float(item.get('subtotal')):.2f}", 'right', 0.3),
        ]})
    cmds.extend([
        {'op': 'text', 'value': rule},
        {'op': 'align', 'value': 'right'},
        {'op': 'text', 'value': f"Subtotal: {subtotal:.2f}"},
        {'op': 'text', 'value': f"Tax {_percent(sale.get('tax_percentage'))}: {total - subtotal:.2f}"},
        {'op': 'size', 'width': 2, 'height': 2},
        {'op': 'text', 'value': f"TOTAL: {total:.2f}"},
        {'op': 'size', 'width': 1, 'height': 1},
        {'op': 'align', 'value': 'center'},
        {'op': 'text', 'value': 'Thank you for your purchase'},
        {'op': 'cut'},
        {'op': 'close'},
    ])
    return cmds


def text_commands(text: str, cut: bool = True) -> List[Command]:
    """Wrap a pre-formatted ticket as primitives, one text command per line."""
    cmds: List[Command] = [{'op': 'text', 'value': line} for line in (text or '').splitlines()]
    if cut:
        cmds.append({'op': 'cut'})
    return cmds


def _to_ascii(text: Any) -> bytes:
    normalized = unicodedata.normalize('NFKD', str(text))
    return normalized.encode('ascii', errors='ignore')


def _table_row(columns: List[Dict[str, Any]], line_width: int) -> str:
    out = []
    for col in columns:
        width = max(1, int(line_width * _as_float(col.get('width'))))
        text = str(col.get('text', ''))[:width]
        align = (col.get('align') or 'left').lower()
        if align == 'center':
            out.append(text.center(width))
        elif align == 'right':
            out.append(text.rjust(width))
        else:
            out.append(text.ljust(width))
    return ''.join(out)[:line_width].rstrip()


def _size_byte(width: Any, height: Any) -> int:
    w = min(max(int(width or 1), 1), 8)
    h = min(max(int(height or 1), 1), 8)
    return ((w - 1) << 4) | (h - 1)


def encode_escpos(commands: List[Command], columns: int = 32) -> bytes:
    """Translate printer primitives into one ESC/POS byte string."""
    data = bytearray(ESC + b'@')
    for cmd in commands:
        if not isinstance(cmd, dict):
            raise ValueError(f"Invalid printer command {cmd!r}")
        op = cmd.get('op')
        if op == 'align':
            value = cmd.get('value')
            if value not in _ALIGN_CODES:
                raise ValueError(f"Unknown alignment {value!r}")
            data += ESC + b'a' + bytes([_ALIGN_CODES[value]])
        elif op == 'style':
            value = cmd.get('value')
            if value not in _STYLE_CODES:
                raise ValueError(f"Unknown style {value!r}")
            data += _STYLE_CODES[value]
        elif op == 'size':
            data += GS + b'!' + bytes([_size_byte(cmd.get('width'), cmd.get('height'))])
        elif op == 'text':
            data += _to_ascii(cmd.get('value', '')) + b'\n'
        elif op == 'table':
            data += _to_ascii(_table_row(cmd.get('columns') or [], columns)) + b'\n'
        elif op == 'raw':
            data += hex_to_bytes(cmd.get('hex') or [])
        elif op == 'feed':
            data += b'\n' * max(0, int(cmd.get('lines', 1)))
        elif op == 'cut':
            # GS V 0: full cut, after feeding the paper past the blade
            data += b'\n' * 3 + GS + b'V\x00'
        elif op == 'close':
            break
        else:
            raise ValueError(f"Unknown printer command {op!r}")
    return bytes(data)


_HEX_CHUNK = re.compile(r'^[0-9a-fA-F\s]*$')


def hex_to_bytes(chunks: List[str]) -> bytes:
    """Raw ESC/POS sequences given as hex strings ("1b 40"), as the agent accepts them."""
    out = bytearray()
    for chunk in chunks or []:
        cleaned = str(chunk).strip()
        if not cleaned:
            continue
        if not _HEX_CHUNK.match(cleaned):
            raise ValueError(f"Invalid hex chunk {chunk!r}")
        try:
            out += bytes.fromhex(cleaned.replace(' ', ''))
        except ValueError as exc:
            raise ValueError(f"Invalid hex chunk {chunk!r}: {exc}") from exc
    return bytes(out)
