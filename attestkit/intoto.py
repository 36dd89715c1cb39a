"""In-toto statements binding a predicate to a set of subjects."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Mapping, Union

__all__ = [
    "STATEMENT_TYPE",
    "PAYLOAD_TYPE",
    "Subject",
    "Statement",
    "new_statement",
    "digest_set_to_subject",
]

STATEMENT_TYPE = "https://in-toto.io/Statement/v0.1"
PAYLOAD_TYPE = "application/vnd.in-toto+json"


@dataclass
class Subject:
    """A named artifact and its digests keyed by hash name."""

    name: str
    digest: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "digest": dict(sorted(self.digest.items()))}


@dataclass
class Statement:
    """An in-toto statement; ``predicate`` holds raw JSON bytes."""

    type: str
    subject: list[Subject]
    predicate_type: str
    predicate: bytes

    def to_dict(self) -> dict[str, Any]:
        return {
            "_type": self.type,
            "subject": [s.to_dict() for s in self.subject],
            "predicateType": self.predicate_type,
            "predicate": json.loads(self.predicate) if self.predicate else None,
        }

    def to_json(self) -> bytes:
        return json.dumps(self.to_dict(), separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def digest_set_to_subject(name: str, digest_set: Any) -> Subject:
    """Build a subject from a digest set.

    The digest set either offers ``to_name_map()`` or is already a mapping of
    hash name to digest.
    """
    to_name_map = getattr(digest_set, "to_name_map", None)
    digests = to_name_map() if callable(to_name_map) else dict(digest_set)
    return Subject(name=name, digest=dict(digests))


def new_statement(
    predicate_type: str,
    predicate: Union[bytes, str],
    subjects: Mapping[str, Any],
) -> Statement:
    """Create a statement of ``predicate_type`` over the given subjects."""
    raw = predicate.encode("utf-8") if isinstance(predicate, str) else bytes(predicate)
    return Statement(
        type=STATEMENT_TYPE,
        subject=[digest_set_to_subject(name, ds) for name, ds in subjects.items()],
        predicate_type=predicate_type,
        predicate=raw,
    )