"""Policy steps, their functionaries and the results of checking collections against them."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Optional, Sequence

from attestkit import log
from attestkit.intoto import Statement
from attestkit.policy.constraints import CertConstraint, X509Verifier
from attestkit.policy.errors import MissingAttestationError, PolicyError

__all__ = [
    "COLLECTION_TYPE",
    "Functionary",
    "Attestation",
    "RegoPolicy",
    "Step",
    "CollectionVerificationResult",
    "RejectedCollection",
    "StepResult",
]

COLLECTION_TYPE = "https://witness.testifysec.com/attestation-collection/v0.1"

RegoEvaluator = Callable[[Any, Sequence["RegoPolicy"]], None]


def _empty_statement() -> Statement:
    return Statement(type="", subject=[], predicate_type="", predicate=b"")


@dataclass
class RegoPolicy:
    module: bytes
    name: str


@dataclass
class Attestation:
    type: str
    rego_policies: list[RegoPolicy] = field(default_factory=list)


@dataclass
class Functionary:
    """A party trusted to sign for a step: by public key ID or by certificate constraint."""

    type: str
    cert_constraint: CertConstraint = field(default_factory=CertConstraint)
    public_key_id: str = ""

    def validate(self, verifier: Any, trust_bundles: Mapping[str, Any]) -> None:
        """Raise PolicyError unless ``verifier`` is this functionary."""
        try:
            verifier_id = verifier.key_id()
        except Exception as err:
            raise PolicyError(f"could not get key id: {err}") from err

        if self.public_key_id and self.public_key_id == verifier_id:
            return

        if not isinstance(verifier, X509Verifier):
            raise PolicyError(
                f"verifier with ID {verifier_id} is not a public key verifier or a x509 verifier"
            )

        if not self.cert_constraint.roots:
            raise PolicyError(
                f"verifier with ID {verifier_id} is an x509 verifier, "
                "but no trusted roots provided in functionary"
            )

        try:
            self.cert_constraint.check(verifier, trust_bundles)
        except PolicyError as err:
            raise PolicyError(
                f"verifier with ID {verifier_id} doesn't meet certificate constraint: {err}"
            ) from err


@dataclass
class CollectionVerificationResult:
    """A signed collection found by a search, and what its verification revealed."""

    verifiers: list[Any] = field(default_factory=list)
    statement: Statement = field(default_factory=_empty_statement)
    collection: Any = None
    reference: str = ""
    errors: list[BaseException] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    valid_functionaries: list[Any] = field(default_factory=list)

    @property
    def collection_name(self) -> str:
        return getattr(self.collection, "name", "") or ""


@dataclass
class RejectedCollection:
    collection: CollectionVerificationResult
    reason: BaseException


@dataclass
class StepResult:
    """Collections that passed and that were rejected for one step."""

    step: str
    passed: list[CollectionVerificationResult] = field(default_factory=list)
    rejected: list[RejectedCollection] = field(default_factory=list)

    def analyze(self) -> bool:
        """True if some collection passed and none of the passed ones carries errors."""
        ok = bool(self.passed)
        for coll in self.passed:
            for warning in coll.warnings:
                log.debug(
                    "Warning: Step: %s, Collection: %s, Warning: %s",
                    self.step,
                    coll.collection_name,
                    warning,
                )
            for err in coll.errors:
                ok = False
                log.errorf(
                    "Unexpected Error in Passed Collection: Step: %s, Collection: %s, Error: %s",
                    self.step,
                    coll.collection_name,
                    err,
                )
        return ok

    def has_errors(self) -> bool:
        return bool(self.rejected)

    def has_passed(self) -> bool:
        return bool(self.passed)

    def error(self) -> str:
        """A message listing why every rejected collection was rejected."""
        reasons = "\n".join(str(r.reason) for r in self.rejected)
        return f"attestations for step {self.step} could not be used due to:\n{reasons}"

    def __str__(self) -> str:
        return self.error()


@dataclass
class Step:
    name: str
    functionaries: list[Functionary] = field(default_factory=list)
    attestations: list[Attestation] = field(default_factory=list)
    artifacts_from: list[str] = field(default_factory=list)

    def check_functionaries(
        self,
        statements: Sequence[CollectionVerificationResult],
        trust_bundles: Optional[Mapping[str, Any]],
    ) -> StepResult:
        """Sort statements by whether a trusted functionary signed them."""
        bundles = trust_bundles or {}
        result = StepResult(step=self.name)
        for statement in statements:
            if statement.statement.predicate_type != COLLECTION_TYPE:
                result.rejected.append(
                    RejectedCollection(
                        statement,
                        PolicyError(
                            f"predicate type {statement.statement.predicate_type} "
                            "is not a collection predicate type"
                        ),
                    )
                )

            if not statement.verifiers:
                result.rejected.append(
                    RejectedCollection(
                        statement,
                        PolicyError("no verifiers present to validate against collection verifiers"),
                    )
                )
                continue

            for verifier in statement.verifiers:
                for functionary in self.functionaries:
                    try:
                        functionary.validate(verifier, bundles)
                    except PolicyError as err:
                        statement.warnings.append(
                            f"failed to validate functionary of KeyID {functionary.public_key_id} "
                            f"in step {self.name}: {err}"
                        )
                    else:
                        statement.valid_functionaries.append(verifier)

            if statement.valid_functionaries:
                result.passed.append(statement)
            else:
                result.rejected.append(
                    RejectedCollection(
                        statement,
                        PolicyError(f"no verifiers matched with allowed functionaries for step {self.name}"),
                    )
                )

        return result

    def validate_attestations(
        self,
        collection_results: Sequence[CollectionVerificationResult],
        rego_evaluator: Optional[RegoEvaluator] = None,
    ) -> StepResult:
        """Check each collection holds the expected attestations and passes their rego policies.

        ``rego_evaluator(attestor, policies)`` raises to deny an attestor.
        """
        result = StepResult(step=self.name)
        for collection in collection_results:
            name = collection.collection_name
            if name != self.name and name != "":
                log.debugf("Skipping collection %s as it is not for step %s", name, self.name)
                continue

            reasons = [f"collection verification failed: {err}" for err in collection.errors]
            found = {
                att.type: att.attestation
                for att in getattr(collection.collection, "attestations", None) or []
            }

            for expected in self.attestations:
                attestor = found.get(expected.type)
                if expected.type not in found:
                    reasons.append(str(MissingAttestationError(self.name, expected.type)))
                if not expected.rego_policies:
                    continue
                if rego_evaluator is None:
                    reasons.append(
                        f"rego policies present for attestation type {expected.type} "
                        "but no rego evaluator provided"
                    )
                    continue
                try:
                    rego_evaluator(attestor, expected.rego_policies)
                except Exception as err:
                    reasons.append(str(err))

            if not reasons:
                result.passed.append(collection)
            else:
                joined = ",\n - ".join(reasons)
                result.rejected.append(
                    RejectedCollection(
                        collection, PolicyError(f"collection validation failed:\n - {joined}")
                    )
                )

        return result