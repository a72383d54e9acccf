from __future__ import annotations

import csv
import json
from typing import List, Union
from pathlib import Path

from .base import Record, as_records


class CSVExporter:
    """
    Writes one row per product record. Nested fields (images, additional)
    are JSON encoded; ``#failed`` debug records are skipped.
    """

    _headers = [
        "id",
        "url",
        "title",
        "brand",
        "sku",
        "price",
        "currency",
        "availability",
        "color",
        "size",
        "material",
        "description",
        "images_urls",
        "additional",
    ]

    def __init__(self, path: str) -> None:
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._write_header = not self.path.exists() or self.path.stat().st_size == 0

    def push(self, items: Union[Record, List[Record]]) -> None:
        with open(self.path, "a", encoding="utf-8", newline="") as f:
            w = csv.writer(f)
            if self._write_header:
                w.writerow(self._headers)
                self._write_header = False
            for record in as_records(items):
                if "#failed" in record:
                    continue
                w.writerow([self._cell(record.get(h)) for h in self._headers])

    def close(self) -> None:
        pass

    @staticmethod
    def _cell(value: object) -> object:
        if value is None:
            return ""
        if isinstance(value, (dict, list)):
            return json.dumps(value, ensure_ascii=False, default=str)
        return value
