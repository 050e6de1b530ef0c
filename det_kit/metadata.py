from __future__ import annotations

from pathlib import Path
from typing import Dict, Union


def load_class_names(path: Union[str, Path]) -> Dict[int, str]:
    """
    Load class names for a detector.

    Two layouts are understood. A `names:` mapping:

        names:
          0: person
          1: bicycle

    or a plain list with one label per line, ids counted from 0 (Darknet
    `coco.names` style). Blank lines and `#` comments are skipped in both.
    """

    with open(path, "r", encoding="utf-8") as f:
        lines = [raw.strip() for raw in f]
    lines = [line for line in lines if line and not line.startswith("#")]

    if "names:" not in lines:
        return {i: label for i, label in enumerate(lines)}

    names: Dict[int, str] = {}
    in_names = False
    for line in lines:
        if line == "names:":
            in_names = True
            continue
        if not in_names:
            continue

        # Parse "id: label"
        if ":" not in line:
            continue
        left, right = line.split(":", 1)
        left = left.strip()
        right = right.strip().strip("'").strip('"')
        if not left.isdigit():
            continue
        names[int(left)] = right

    return names
