from typing import Iterable, List

from comic_gen.core.character_store import CharacterStore
from comic_gen.core.models import CharacterReference, ReferenceProvenance


def resolve_references(mentioned_characters: Iterable[str], store: CharacterStore) -> List[CharacterReference]:
    """
    Selects the reference images to attach to one panel.

    With no mentioned characters every stored reference is attached. Otherwise
    only galleries whose name matches a mentioned name case-insensitively are
    attached; mentioned names with no stored gallery are ignored. References
    keep the store's order, not the order of mention.
    """
    wanted = {name.strip().casefold() for name in mentioned_characters if name and name.strip()}
    if not wanted:
        return store.all_references()

    selected = []
    for name, refs in store.items():
        if name.casefold() in wanted:
            selected.extend(refs)
    return selected


def provenance(references: Iterable[CharacterReference]) -> List[ReferenceProvenance]:
    return [ReferenceProvenance(name=ref.name, mime_type=ref.mime_type) for ref in references]
