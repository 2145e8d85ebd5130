from __future__ import annotations

from typing import List

from ...logging import get_logger
from .models import VocabularyPair


LOG = get_logger("library-parser")


def parse_vocabulary_csv(raw_text: str) -> List[VocabularyPair]:
    """Turn the model's CSV-ish answer into ordered vocabulary pairs.

    - One pair per line: first field German, second English, rest ignored.
    - Blank lines, lines with fewer than two comma-separated fields and lines
      with an empty word are skipped without error.
    - No quoting: a comma inside a word splits it. Skipped lines are counted
      in the debug log so the loss stays visible.
    - An empty result is not an error here; saving an empty list is.
    """
    pairs: List[VocabularyPair] = []
    skipped = 0
    for line in (raw_text or "").splitlines():
        stripped = line.strip()
        if not stripped:
            continue
        parts = stripped.split(",")
        if len(parts) < 2:
            skipped += 1
            continue
        source, target = parts[0].strip(), parts[1].strip()
        if not source or not target:
            skipped += 1
            continue
        pairs.append(VocabularyPair(source=source, target=target))
    if skipped:
        LOG.debug("Skipped %d malformed line(s) while parsing vocabulary CSV", skipped)
    LOG.debug("Parsed %d vocabulary pair(s)", len(pairs))
    return pairs
