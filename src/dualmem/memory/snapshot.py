"""JSON snapshots of the two stores.

``to_jsonable`` and ``from_jsonable`` convert between the model dataclasses
and plain JSON data, field by field, driven by the dataclass type hints.
"""

from __future__ import annotations

import dataclasses
import functools
import json
import logging
import types
import typing
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any, Literal, Union

if TYPE_CHECKING:
    from dualmem.memory.engine import DualMemoryEngine

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = 1


def to_jsonable(value: Any) -> Any:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {f.name: to_jsonable(getattr(value, f.name)) for f in dataclasses.fields(value)}
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, dict):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [to_jsonable(v) for v in value]
    return value


@functools.lru_cache(maxsize=None)
def _hints(cls: type) -> dict[str, Any]:
    return typing.get_type_hints(cls)


def from_jsonable(tp: Any, data: Any) -> Any:
    """Rebuild a value of type ``tp`` from the output of ``to_jsonable``."""
    if data is None:
        return None
    if tp is Any:
        return data

    origin = typing.get_origin(tp)
    if origin is Union or origin is types.UnionType:
        options = [a for a in typing.get_args(tp) if a is not type(None)]
        if len(options) == 1:
            return from_jsonable(options[0], data)
        for option in options:
            try:
                return from_jsonable(option, data)
            except (TypeError, ValueError, KeyError):
                continue
        raise ValueError(f"Cannot decode {data!r} as {tp}")
    if origin is Literal:
        return data
    if origin in (list, tuple, set):
        args = typing.get_args(tp)
        item_type = args[0] if args else Any
        return origin(from_jsonable(item_type, v) for v in data)
    if origin is dict:
        _, value_type = typing.get_args(tp) or (str, Any)
        return {k: from_jsonable(value_type, v) for k, v in data.items()}

    if isinstance(tp, type) and dataclasses.is_dataclass(tp):
        if not isinstance(data, dict):
            raise TypeError(f"Expected an object for {tp.__name__}, got {type(data).__name__}")
        hints = _hints(tp)
        kwargs = {
            f.name: from_jsonable(hints[f.name], data[f.name])
            for f in dataclasses.fields(tp)
            if f.init and f.name in data
        }
        return tp(**kwargs)
    if tp is datetime:
        return datetime.fromisoformat(data)
    if tp is Path:
        return Path(data)
    if tp is float and isinstance(data, int):
        return float(data)
    return data


def save_snapshot(path: Path, engine: DualMemoryEngine) -> Path:
    """Write both stores to ``path`` as one JSON document."""
    payload = {
        "version": SNAPSHOT_VERSION,
        "saved_at": datetime.now().isoformat(),
        "knowledge": engine.knowledge.export_state(),
        "reasoning": engine.reasoning.export_state(),
    }
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
    logger.info("Snapshot saved to %s", path)
    return path


def load_snapshot(path: Path, engine: DualMemoryEngine) -> bool:
    """Restore both stores from ``path``. Returns False when there is no snapshot."""
    if not path.exists():
        logger.debug("No snapshot at %s", path)
        return False
    payload = json.loads(path.read_text(encoding="utf-8"))
    version = payload.get("version")
    if version != SNAPSHOT_VERSION:
        raise ValueError(f"Unsupported snapshot version: {version}")
    engine.knowledge.import_state(payload.get("knowledge", {}))
    engine.reasoning.import_state(payload.get("reasoning", {}))
    logger.info("Snapshot restored from %s", path)
    return True
