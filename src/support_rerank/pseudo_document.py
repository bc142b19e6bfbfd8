"""
Entity pseudo-documents and mention extraction.

A pseudo-document for an entity is the list of candidate passages (within a
query's top-K) whose linked-entity field mentions that entity. Building one
is a membership test per candidate passage, never a full-text search.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass, field

from support_rerank.index import Document, DocumentIndex

# Characters stripped from NER mentions: - + . ^ * : , ; = ( ) { } [ ] "
_SPECIAL_CHARS = re.compile(r"[\-+.^*:,;=(){}\[\]\"]")

# A single non-whitespace character with whitespace on both sides; the
# surrounding whitespace is removed together with it.
_ISOLATED_CHAR = re.compile(r"[ \t\n\x0b\f\r]([^ \t\n\x0b\f\r])[ \t\n\x0b\f\r]")


@dataclass
class PseudoDocument:
    """Passages mentioning one entity, in candidate-list order."""

    entity: str
    passages: list[tuple[str, Document]] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.passages)

    @property
    def passage_ids(self) -> list[str]:
        return [passage_id for passage_id, _ in self.passages]

    def entity_list(self, entity_field: str = "entity", delimiter: str = " ") -> list[str]:
        """Entities linked in all passages, duplicates kept."""
        return [e for _, doc in self.passages for e in linked_entities(doc, entity_field, delimiter)]


def linked_entities(doc: Document, entity_field: str = "entity", delimiter: str = " ") -> list[str]:
    return [e for e in doc.get(entity_field, "").split(delimiter) if e]


def build_pseudo_document(
    entity_id: str,
    passage_ids: Sequence[str],
    index: DocumentIndex,
    id_field: str = "id",
    entity_field: str = "entity",
    delimiter: str = " ",
) -> PseudoDocument | None:
    """
    Collect the candidate passages whose entity field lists entity_id.

    Args:
        entity_id: Entity the pseudo-document is built for.
        passage_ids: Candidate passages (already capped to top-K).
        index: Passage index holding the linked-entity field.
        id_field: Field holding the passage id.
        entity_field: Field listing entity ids separated by delimiter.
        delimiter: Separator between entity ids.

    Returns:
        The pseudo-document, or None when no candidate mentions the entity.
        Candidates missing from the index are skipped.
    """
    passages = []
    for passage_id in passage_ids:
        doc = index.lookup(id_field, passage_id)
        if doc is None:
            continue
        if entity_id in linked_entities(doc, entity_field, delimiter):
            passages.append((passage_id, doc))

    if not passages:
        return None
    return PseudoDocument(entity=entity_id, passages=passages)


def clean_mentions(text: str) -> list[str]:
    """
    Normalize newline-separated mentions into a list of entity names.

    Strips punctuation, elides isolated single characters, splits on newlines
    and drops empty entries. Duplicates are kept.
    """
    text = _SPECIAL_CHARS.sub("", text)
    text = _ISOLATED_CHAR.sub("", text)
    return [word for word in text.split("\n") if word]


def mention_names(doc: Document, field: str = "Entity") -> list[str]:
    """Raw mention names of an NER field whose lines look like "mention:TYPE"."""
    return [line.split(":")[0] for line in doc.get(field, "").split("\n") if line]


def extract_mentions(doc: Document, field: str = "Entity") -> list[str]:
    """Cleaned entity mentions of a passage stored in the NER index."""
    return clean_mentions("\n".join(mention_names(doc, field)))
