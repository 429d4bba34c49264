"""Tabular / structured data conversions: csv, tsv, xlsx, json, yaml, xml, markdown tables."""
import csv
import io
import json
import logging
import re
import xml.etree.ElementTree as ET
from datetime import date, datetime
from typing import Any, Iterable, Optional

import yaml
from openpyxl import Workbook, load_workbook

from fileforge.conversion.base import Converter, FunctionConverter
from fileforge.conversion.models import AdvancedOptions, Category
from fileforge.errors import ValidationError

logger = logging.getLogger("fileforge.data")

DEFAULT_SHEET_TITLE = "Sheet1"


# --- helpers ---------------------------------------------------------------

def _text(data: bytes, kind: str) -> str:
    try:
        return data.decode("utf-8-sig")
    except UnicodeDecodeError:
        raise ValidationError(f"{kind} file must be UTF-8 encoded text")


def _write_delimited(rows: Iterable[list], delimiter: str = ",") -> bytes:
    out = io.StringIO()
    writer = csv.writer(out, delimiter=delimiter, lineterminator="\n")
    writer.writerows(rows)
    return out.getvalue().encode("utf-8")


def _read_delimited(text: str, delimiter: str = ",") -> list[list[str]]:
    return [row for row in csv.reader(io.StringIO(text), delimiter=delimiter) if any(c.strip() for c in row)]


def _cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False, default=str)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


def _json_default(value: Any) -> str:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


def _dump_json(value: Any) -> bytes:
    return json.dumps(value, indent=2, ensure_ascii=False, default=_json_default).encode("utf-8")


def _load_json(data: bytes) -> Any:
    try:
        return json.loads(_text(data, "JSON"))
    except json.JSONDecodeError as e:
        raise ValidationError(f"Invalid JSON: expected a JSON object or array of objects ({e.msg} at line {e.lineno})")


def _require_records(value: Any, target: str, kind: str = "JSON") -> list[dict]:
    """A single object becomes one row; otherwise a non-empty array of objects is required."""
    if isinstance(value, dict):
        return [value]
    if isinstance(value, list):
        if not value:
            raise ValidationError(f"{kind} array is empty; nothing to convert to {target}")
        if all(isinstance(item, dict) for item in value):
            return value
    raise ValidationError(f"{kind} must be an object or an array of objects for {target} conversion")


def _records_to_table(records: list[dict]) -> list[list[Any]]:
    """Header row (union of keys in first-seen order) followed by one row per record."""
    header: list[str] = []
    seen = set()
    for record in records:
        for key in record:
            if key not in seen:
                seen.add(key)
                header.append(key)
    rows = [[record.get(key) for key in header] for record in records]
    return [header, *rows]


def _tabular(value: Any) -> Any:
    """Descend through single-key wrappers ({"rows": {"row": [...]}}) to the record set."""
    while isinstance(value, dict) and len(value) == 1:
        inner = next(iter(value.values()))
        if not isinstance(inner, (dict, list)):
            break
        value = inner
    return value


def _records_csv(records: list[dict]) -> bytes:
    return _write_delimited([[_cell(v) for v in row] for row in _records_to_table(records)])


def _workbook_bytes(rows: Iterable[list], title: str = DEFAULT_SHEET_TITLE) -> bytes:
    wb = Workbook()
    ws = wb.active
    ws.title = title
    for row in rows:
        ws.append(row)
    out = io.BytesIO()
    wb.save(out)
    return out.getvalue()


def _xlsx_value(value: Any) -> Any:
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False, default=str)
    return value


def _sheet_rows(data: bytes, sheet_name: Optional[str]) -> list[tuple]:
    wb = load_workbook(io.BytesIO(data), read_only=True, data_only=True)
    try:
        if sheet_name:
            if sheet_name not in wb.sheetnames:
                raise ValidationError(
                    f"Sheet '{sheet_name}' not found; available sheets: {', '.join(wb.sheetnames)}"
                )
            ws = wb[sheet_name]
        else:
            ws = wb[wb.sheetnames[0]]
        return [row for row in ws.iter_rows(values_only=True) if any(v is not None and v != "" for v in row)]
    finally:
        wb.close()


# --- csv / tsv / json ------------------------------------------------------

def csv_to_json(data: bytes, options: AdvancedOptions) -> bytes:
    reader = csv.DictReader(io.StringIO(_text(data, "CSV")))
    if not reader.fieldnames:
        raise ValidationError("CSV has no header row")
    reader.fieldnames = [h.strip() for h in reader.fieldnames]
    records = [
        {k: (v if v is not None else "") for k, v in row.items() if k is not None}
        for row in reader
    ]
    return _dump_json(records)


def json_to_csv(data: bytes, options: AdvancedOptions) -> bytes:
    return _records_csv(_require_records(_load_json(data), "CSV"))


def csv_to_tsv(data: bytes, options: AdvancedOptions) -> bytes:
    return _write_delimited(_read_delimited(_text(data, "CSV")), delimiter="\t")


def tsv_to_csv(data: bytes, options: AdvancedOptions) -> bytes:
    return _write_delimited(_read_delimited(_text(data, "TSV"), delimiter="\t"))


# --- xlsx ------------------------------------------------------------------

def csv_to_xlsx(data: bytes, options: AdvancedOptions) -> bytes:
    rows = _read_delimited(_text(data, "CSV"))
    if not rows:
        raise ValidationError("CSV file contains no rows")
    return _workbook_bytes(rows, options.sheet_name or DEFAULT_SHEET_TITLE)


def json_to_xlsx(data: bytes, options: AdvancedOptions) -> bytes:
    table = _records_to_table(_require_records(_load_json(data), "XLSX"))
    return _workbook_bytes(
        ([_xlsx_value(v) for v in row] for row in table),
        options.sheet_name or DEFAULT_SHEET_TITLE,
    )


def xlsx_to_csv(data: bytes, options: AdvancedOptions) -> bytes:
    rows = _sheet_rows(data, options.sheet_name)
    return _write_delimited([[_cell(v) for v in row] for row in rows])


def xlsx_to_json(data: bytes, options: AdvancedOptions) -> bytes:
    rows = _sheet_rows(data, options.sheet_name)
    if not rows:
        return _dump_json([])
    header = [_cell(h) or f"column_{i + 1}" for i, h in enumerate(rows[0])]
    records = [dict(zip(header, row)) for row in rows[1:]]
    return _dump_json(records)


# --- yaml ------------------------------------------------------------------

def _load_yaml(data: bytes) -> Any:
    try:
        value = yaml.safe_load(_text(data, "YAML"))
    except yaml.YAMLError as e:
        raise ValidationError(f"Invalid YAML: {str(e).splitlines()[0]}")
    if value is None:
        raise ValidationError("YAML document is empty")
    return value


def yaml_to_json(data: bytes, options: AdvancedOptions) -> bytes:
    return _dump_json(_load_yaml(data))


def yaml_to_csv(data: bytes, options: AdvancedOptions) -> bytes:
    return _records_csv(_require_records(_tabular(_load_yaml(data)), "CSV", "YAML"))


def json_to_yaml(data: bytes, options: AdvancedOptions) -> bytes:
    value = _load_json(data)
    return yaml.safe_dump(value, sort_keys=False, allow_unicode=True, default_flow_style=False).encode("utf-8")


# --- xml -------------------------------------------------------------------

def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _element_value(el: ET.Element) -> Any:
    """Children become keys (repeated tags become lists), attributes "@name", mixed text "#text"."""
    value: dict[str, Any] = {f"@{_local_name(k)}": v for k, v in el.attrib.items()}
    for child in el:
        name = _local_name(child.tag)
        child_value = _element_value(child)
        if name in value:
            if not isinstance(value[name], list):
                value[name] = [value[name]]
            value[name].append(child_value)
        else:
            value[name] = child_value
    text = (el.text or "").strip()
    if not value:
        return text or None
    if text:
        value["#text"] = text
    return value


def _load_xml(data: bytes) -> dict:
    try:
        root = ET.fromstring(data)
    except ET.ParseError as e:
        raise ValidationError(f"Invalid XML: {e}")
    return {_local_name(root.tag): _element_value(root)}


def xml_to_json(data: bytes, options: AdvancedOptions) -> bytes:
    return _dump_json(_load_xml(data))


def xml_to_csv(data: bytes, options: AdvancedOptions) -> bytes:
    return _records_csv(_require_records(_tabular(_load_xml(data)), "CSV", "XML"))


# --- markdown -> csv -------------------------------------------------------

_SEPARATOR_CELL = re.compile(r"^:?-+:?$")
_HEADING = re.compile(r"^(#+)\s*(.*)$")
_LIST_ITEM = re.compile(r"^[-*+]\s+(.*)$")
_NUMBERED_ITEM = re.compile(r"^\d+\.\s+(.*)$")
_RULE = re.compile(r"^[-=*_]+$")


def _split_table_row(line: str) -> list[str]:
    if line.startswith("|"):
        line = line[1:]
    if line.endswith("|"):
        line = line[:-1]
    return [cell.strip() for cell in line.split("|")]


def _is_separator(cells: list[str]) -> bool:
    return bool(cells) and all(_SEPARATOR_CELL.match(c) for c in cells)


def _table_from_block(block: list[list[str]]) -> Optional[list[list[str]]]:
    """Header + separator + at least one data row with the header's column count."""
    if len(block) < 3:
        return None
    header, separator = block[0], block[1]
    if len(separator) != len(header) or not _is_separator(separator):
        return None
    rows = [r for r in block[2:] if len(r) == len(header) and not _is_separator(r)]
    if not rows:
        return None
    return [header, *rows]


def _first_table(lines: list[str]) -> Optional[list[list[str]]]:
    block: list[list[str]] = []
    for line in [*lines, ""]:
        stripped = line.strip()
        if "|" in stripped:
            block.append(_split_table_row(stripped))
            continue
        if block:
            # Prose containing a pipe may sit directly above the header row.
            for start in range(len(block) - 2):
                table = _table_from_block(block[start:])
                if table:
                    return table
            block = []
    return None


def _structure_rows(lines: list[str]) -> list[list[str]]:
    rows = []
    for line in lines:
        trimmed = line.strip()
        if not trimmed:
            continue
        heading = _HEADING.match(trimmed)
        if heading:
            if heading.group(2).strip():
                rows.append([f"H{len(heading.group(1))}", heading.group(2).strip()])
            continue
        item = _LIST_ITEM.match(trimmed)
        if item:
            if item.group(1).strip():
                rows.append(["List Item", item.group(1).strip()])
            continue
        numbered = _NUMBERED_ITEM.match(trimmed)
        if numbered:
            if numbered.group(1).strip():
                rows.append(["Numbered Item", numbered.group(1).strip()])
            continue
        if not _RULE.match(trimmed):
            rows.append(["Text", trimmed])
    return rows


def md_to_csv(data: bytes, options: AdvancedOptions) -> bytes:
    """Best-effort Markdown -> CSV.

    1. The first well-formed pipe table wins; scanning stops there.
    2. Otherwise headings / list items / numbered items / text become Type,Content rows.
    3. Otherwise every non-blank line becomes a Content row.
    """
    lines = _text(data, "Markdown").splitlines()

    table = _first_table(lines)
    if table:
        return _write_delimited(table)

    rows = _structure_rows(lines)
    if rows:
        return _write_delimited([["Type", "Content"], *rows])

    content = [line.strip() for line in lines if line.strip() and not _RULE.match(line.strip())]
    if content:
        return _write_delimited([["Content"], *[[c] for c in content]])

    raise ValidationError("Markdown file is empty or contains no convertible content")


def converters() -> dict[str, Converter]:
    funcs = {
        "csv-to-json": csv_to_json,
        "json-to-csv": json_to_csv,
        "csv-to-tsv": csv_to_tsv,
        "tsv-to-csv": tsv_to_csv,
        "csv-to-xlsx": csv_to_xlsx,
        "json-to-xlsx": json_to_xlsx,
        "xlsx-to-csv": xlsx_to_csv,
        "xlsx-to-json": xlsx_to_json,
        "yaml-to-json": yaml_to_json,
        "yaml-to-csv": yaml_to_csv,
        "json-to-yaml": json_to_yaml,
        "xml-to-json": xml_to_json,
        "xml-to-csv": xml_to_csv,
        "md-to-csv": md_to_csv,
    }
    return {conversion_id: FunctionConverter(Category.DATA, func) for conversion_id, func in funcs.items()}
