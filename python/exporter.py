"""
Snapshot Export
Read-only dump of the loaded watchlist snapshot for offline inspection
"""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from config_manager import ExportConfig, EXPORT_FORMATS
from store.records import Snapshot

logger = logging.getLogger(__name__)


class ExportError(Exception):
    """Raised when a snapshot cannot be exported"""
    pass


class SnapshotExporter:
    """Writes snapshots to JSON or YAML files"""

    def __init__(self, config: Optional[ExportConfig] = None):
        self.config = config or ExportConfig()
        self.output_dir = Path(self.config.output_directory)

    def build_document(self, snapshot: Snapshot) -> Dict[str, Any]:
        """Build the exported document"""
        return {
            'exported_at': datetime.now(timezone.utc).isoformat(),
            'source_count': len(snapshot.sources),
            'entry_count': snapshot.entry_count,
            'sources': snapshot.to_dict(),
        }

    def export(self, snapshot: Snapshot, path: Optional[Path] = None, fmt: Optional[str] = None) -> Path:
        """Export a snapshot

        Args:
            snapshot: Snapshot to dump
            path: Output file; defaults to output_directory/snapshot_<timestamp>.<ext>
            fmt: 'json' or 'yaml'; defaults to the configured format,
                or the file suffix when a path is given

        Returns:
            Path of the written file
        """
        if fmt is None and path is not None and Path(path).suffix.lower() in ('.yaml', '.yml'):
            fmt = 'yaml'
        fmt = (fmt or self.config.format).lower()
        if fmt not in EXPORT_FORMATS:
            raise ExportError(f"Unsupported export format '{fmt}', expected one of {EXPORT_FORMATS}")

        if path is None:
            timestamp = datetime.now(timezone.utc).strftime('%Y%m%d_%H%M%S')
            path = self.output_dir / f"snapshot_{timestamp}.{fmt}"
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        document = self.build_document(snapshot)
        try:
            with open(path, 'w', encoding='utf-8') as f:
                if fmt == 'json':
                    json.dump(document, f, indent=2, ensure_ascii=False)
                else:
                    yaml.safe_dump(document, f, allow_unicode=True, sort_keys=False)
        except OSError as e:
            raise ExportError(f"Failed to write export {path}: {e}") from e

        logger.info(f"✓ Snapshot exported: {path} ({snapshot.entry_count} entries)")
        return path
