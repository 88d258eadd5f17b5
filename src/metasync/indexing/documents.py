"""Conversion of an object's metadata bundle into an index document."""

from collections import defaultdict
from collections.abc import Sequence

from metasync.errors import DataIntegrityError, NoMetadataError
from metasync.models import AVURecord, IndexedDocument, MetadataEntry, indexed_type


def build_document(bundle: Sequence[AVURecord]) -> IndexedDocument:
    """Build the index document for one object from all of its AVUs.

    Root AVUs (describing the object itself) become the document's top-level
    ``metadata``; each nested AVU is attached under the AVU it describes, to
    any depth. Entry order follows the bundle order, so the same bundle always
    produces the same document.

    Args:
        bundle: Every AVU row, root and nested, belonging to one object.

    Returns:
        The object's document.

    Raises:
        NoMetadataError: If the bundle is empty.
        DataIntegrityError: If root AVUs disagree on the object id or type, if
            there are no root AVUs, or if a nested AVU's target is not in the
            bundle.
    """
    if not bundle:
        raise NoMetadataError("Object has no metadata")

    roots = [avu for avu in bundle if not avu.is_nested]
    if not roots:
        raise DataIntegrityError(
            f"Bundle for {bundle[0].object_id} contains only nested AVUs"
        )

    object_id = roots[0].target_id
    target_type = roots[0].target_type
    for avu in roots[1:]:
        if avu.target_id != object_id or avu.target_type != target_type:
            raise DataIntegrityError(
                f"Mixed targets in one bundle: {target_type}/{object_id} "
                f"and {avu.target_type}/{avu.target_id}"
            )

    children: dict[str, list[AVURecord]] = defaultdict(list)
    for avu in bundle:
        if avu.is_nested:
            children[avu.target_id].append(avu)

    attached = 0

    def to_entry(avu: AVURecord, seen: frozenset[str]) -> MetadataEntry:
        nonlocal attached
        if avu.id in seen:
            raise DataIntegrityError(f"AVU {avu.id} is nested under itself")
        seen = seen | {avu.id}
        nested = [to_entry(child, seen) for child in children.get(avu.id, [])]
        attached += len(nested)
        return MetadataEntry(
            id=avu.id,
            attribute=avu.attribute,
            value=avu.value,
            unit=avu.unit,
            created_by=avu.created_by,
            modified_by=avu.modified_by,
            created_on=avu.created_on,
            modified_on=avu.modified_on,
            metadata=nested,
        )

    metadata = [to_entry(avu, frozenset()) for avu in roots]

    nested_total = len(bundle) - len(roots)
    if attached != nested_total:
        raise DataIntegrityError(
            f"{nested_total - attached} nested AVUs of {target_type}/{object_id} "
            "are not attached to any AVU in the bundle"
        )

    return IndexedDocument(
        id=object_id,
        doc_type=indexed_type(target_type),
        target_type=target_type,
        metadata=metadata,
    )
