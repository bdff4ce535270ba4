"""JSON file sink for exporting plans and modifications."""

import json
import logging
from pathlib import Path
from typing import Any

from installment_engine.exceptions import SinkError
from installment_engine.sinks.serialization import to_dict

logger = logging.getLogger(__name__)


class JsonFileSink:
    """Output records to JSON files, one file per entity type."""

    def __init__(self, output_dir: str | Path, pretty: bool = False) -> None:
        """Initialize JSON file sink.

        Parameters
        ----------
        output_dir : str | Path
            Directory to write JSON files.
        pretty : bool
            Pretty-print JSON output.
        """
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.pretty = pretty
        self._counts: dict[str, int] = {}

    def write_batch(self, entity_type: str, records: list[Any]) -> Path:
        """Write a batch of records to ``<entity_type>.json``."""
        file_path = self.output_dir / f"{entity_type}.json"

        data = [to_dict(record) for record in records]

        try:
            with open(file_path, "w", encoding="utf-8") as f:
                if self.pretty:
                    json.dump(data, f, indent=2, ensure_ascii=False, default=str)
                else:
                    json.dump(data, f, ensure_ascii=False, default=str)
        except OSError as exc:
            raise SinkError(
                f"Could not write {file_path}", field="output_dir", details={"path": str(file_path)}
            ) from exc

        self._counts[entity_type] = len(records)
        logger.info("Wrote %d %s to %s", len(records), entity_type, file_path)
        return file_path

    def send(self, topic: str, record: Any, key: str | None = None) -> None:
        """Append a single record to ``<topic>.jsonl`` (event sink interface)."""
        file_path = self.output_dir / (topic.replace(".", "_") + ".jsonl")
        try:
            with open(file_path, "a", encoding="utf-8") as f:
                f.write(json.dumps(to_dict(record), ensure_ascii=False, default=str) + "\n")
        except OSError as exc:
            raise SinkError(
                f"Could not append to {file_path}", field="output_dir", details={"path": str(file_path)}
            ) from exc
        self._counts[topic] = self._counts.get(topic, 0) + 1

    def close(self) -> None:
        """Print summary."""
        print(f"JSON files written to: {self.output_dir}")
        for entity_type, count in self._counts.items():
            print(f"  {entity_type}: {count} records")
