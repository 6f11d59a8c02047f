from __future__ import annotations

import json
import logging
from pathlib import Path

from ledgerload.domain.models import LoadResult

logger = logging.getLogger(__name__)


def write_result(result: LoadResult, path: str | Path) -> Path:
    """Write the run result as tab-indented JSON, replacing any previous file."""
    out = Path(path)
    if out.parent and not out.parent.exists():
        out.parent.mkdir(parents=True, exist_ok=True)

    tmp = out.with_name(out.name + ".tmp")
    with tmp.open("w", encoding="utf-8") as f:
        json.dump(result.to_dict(), f, indent="\t")
        f.write("\n")
    tmp.replace(out)

    logger.info("Wrote result to %s", out)
    return out
