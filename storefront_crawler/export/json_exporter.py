from __future__ import annotations

import json
from typing import List, Union
from pathlib import Path

from .base import Record, as_records


class JSONLinesExporter:
    """Appends each record as one JSON line to ``path``."""

    def __init__(self, path: str) -> None:
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def push(self, items: Union[Record, List[Record]]) -> None:
        with open(self.path, "a", encoding="utf-8") as f:
            for record in as_records(items):
                f.write(json.dumps(record, ensure_ascii=False, default=str))
                f.write("\n")

    def close(self) -> None:
        pass
