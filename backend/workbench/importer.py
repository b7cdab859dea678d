# workbench/importer.py
"""
Reconciles an external snapshot (export file, desktop import) with the
current collections/history/environments.

Replace mode swaps everything out. Merge mode keeps what exists and appends
the incoming collections under fresh ids and de-duplicated names; history and
environments are simply concatenated.
"""

import json
from typing import Any, Callable, Iterable, List, Tuple, Union

from pydantic import ValidationError

from .errors import InvalidImportError
from .monitoring import logger
from .schemas import Collection, Environment, ImportSnapshot, RequestHistory, new_id


def unique_collection_name(name: str, existing_names: Iterable[str]) -> str:
    taken = set(existing_names)
    unique = name
    counter = 1
    while unique in taken:
        unique = f"{name} ({counter})"
        counter += 1
    return unique


def parse_snapshot(raw: Union[str, bytes, dict]) -> ImportSnapshot:
    """
    Parse and validate an import payload before anything is mutated.
    Raises InvalidImportError for malformed JSON or a schema mismatch.
    """
    try:
        data = json.loads(raw) if isinstance(raw, (str, bytes)) else raw
        if not isinstance(data, dict):
            raise InvalidImportError("Import file must contain a JSON object")
        return ImportSnapshot.model_validate(data)
    except (ValueError, ValidationError) as e:
        logger.warning("Rejected import payload: %s", e)
        raise InvalidImportError(f"Invalid import file: {e}") from e


def _replace(collections: List[Collection]) -> List[Collection]:
    return [
        c.model_copy(update={
            "requests": [r.model_copy(update={"collection_id": c.id}) for r in c.requests],
        })
        for c in collections
    ]


def _merge(existing: List[Collection], incoming: List[Collection],
           id_factory: Callable[[], str]) -> List[Collection]:
    merged = list(existing)
    for col in incoming:
        name = unique_collection_name(col.name, (c.name for c in merged))
        collection_id = id_factory()
        requests = [
            # collection_id keeps the incoming collection's id, not the new one
            r.model_copy(update={"id": id_factory(), "collection_id": col.id})
            for r in col.requests
        ]
        merged.append(col.model_copy(update={"id": collection_id, "name": name, "requests": requests}))
    return merged


def merge_snapshot(
    collections: List[Collection],
    history: List[RequestHistory],
    environments: List[Environment],
    incoming_collections: List[Collection],
    incoming_history: List[RequestHistory],
    incoming_environments: List[Environment],
    replace_existing: bool,
    id_factory: Callable[[], str] = new_id,
) -> Tuple[List[Collection], List[RequestHistory], List[Environment]]:
    if replace_existing:
        return _replace(incoming_collections), list(incoming_history), list(incoming_environments)

    return (
        _merge(collections, incoming_collections, id_factory),
        list(history) + list(incoming_history),
        list(environments) + list(incoming_environments),
    )


def snapshot_lists(snapshot: Any) -> Tuple[List[Collection], List[RequestHistory], List[Environment]]:
    """Absent snapshot fields count as empty lists."""
    return (
        list(snapshot.collections or []),
        list(snapshot.history or []),
        list(snapshot.environments or []),
    )
