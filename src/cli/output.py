"""
CLI - Item Formatting

Renders lists of items as a table, CSV, JSON or YAML.
"""
import csv
import io
import json
from typing import Dict, List, Sequence

import yaml
from rich import box
from rich.console import Console
from rich.table import Table
from rich.text import Text

FORMATS = ("table", "csv", "json", "yaml")

# Wide enough that long URLs are never wrapped
TABLE_WIDTH = 4096


def _table(items: List[Dict[str, str]], fields: Sequence[str]) -> str:
    table = Table(box=box.ASCII, show_header=True)
    for field in fields:
        table.add_column(field, no_wrap=True, overflow="ignore")
    for item in items:
        table.add_row(*(Text(str(item.get(field, ""))) for field in fields))

    console = Console(file=io.StringIO(), width=TABLE_WIDTH, color_system=None, highlight=False)
    console.print(table)
    return console.file.getvalue().rstrip("\n")


def _csv(items: List[Dict[str, str]], fields: Sequence[str]) -> str:
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=list(fields), extrasaction="ignore", lineterminator="\n")
    writer.writeheader()
    writer.writerows(items)
    return buffer.getvalue().rstrip("\n")


def format_items(format_type: str, items: List[Dict[str, str]], fields: Sequence[str]) -> str:
    """Render items keeping only the given fields."""
    items = [{f: item.get(f, "") for f in fields} for item in items]

    if format_type == "json":
        return json.dumps(items)
    if format_type == "yaml":
        return yaml.safe_dump(items, explicit_start=True, default_flow_style=False, sort_keys=False).rstrip("\n")
    if format_type == "csv":
        return _csv(items, fields)
    return _table(items, fields)
