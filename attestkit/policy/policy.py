"""Policies: trusted roots and keys, the steps of a supply chain, and their verification."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Mapping, Optional, Protocol, Sequence

from cryptography import x509

from attestkit.policy.errors import (
    InvalidOptionError,
    KeyIDMismatchError,
    MismatchArtifactError,
    NoCollectionsError,
    PolicyError,
    PolicyExpiredError,
    VerifyArtifactsFailedError,
)
from attestkit.policy.step import (
    CollectionVerificationResult,
    RegoEvaluator,
    RejectedCollection,
    Step,
    StepResult,
)

__all__ = [
    "POLICY_PREDICATE",
    "Root",
    "PublicKey",
    "TrustBundle",
    "VerifiedSource",
    "Policy",
    "verify_collection_artifacts",
    "compare_artifacts",
]

POLICY_PREDICATE = "https://witness.testifysec.com/policy/v0.1"

DEFAULT_SEARCH_DEPTH = 3


def _zero_time() -> datetime:
    return datetime.min.replace(tzinfo=timezone.utc)


def _aware(moment: datetime) -> datetime:
    return moment if moment.tzinfo is not None else moment.replace(tzinfo=timezone.utc)


class VerifiedSource(Protocol):
    """Finds signed collections for a step that refer to any of the given subject digests."""

    def search(
        self,
        collection_name: str,
        subject_digests: Sequence[str],
        attestations: Sequence[str],
    ) -> Iterable[CollectionVerificationResult]: ...


@dataclass
class Root:
    """A trusted root certificate and its intermediates, PEM or DER encoded."""

    certificate: bytes
    intermediates: list[bytes] = field(default_factory=list)


@dataclass
class PublicKey:
    key_id: str
    key: bytes


@dataclass
class TrustBundle:
    root: x509.Certificate
    intermediates: list[x509.Certificate] = field(default_factory=list)


def _parse_certificate(data: bytes) -> x509.Certificate:
    try:
        return x509.load_pem_x509_certificate(data)
    except ValueError:
        pass
    try:
        return x509.load_der_x509_certificate(data)
    except ValueError as err:
        raise PolicyError(f"could not parse certificate: {err}") from err


def _trust_bundles_from_roots(roots: Mapping[str, Root]) -> dict[str, TrustBundle]:
    return {
        root_id: TrustBundle(
            root=_parse_certificate(root.certificate),
            intermediates=[_parse_certificate(data) for data in root.intermediates],
        )
        for root_id, root in roots.items()
    }


def _call_digest_map(obj: Any, method: str) -> Mapping[str, Any]:
    accessor = getattr(obj, method, None)
    if not callable(accessor):
        return {}
    return accessor() or {}


def _digest_sets_equal(material: Any, artifact: Any) -> bool:
    equal = getattr(material, "equal", None)
    if callable(equal):
        return bool(equal(artifact))
    return dict(material) == dict(artifact)


def compare_artifacts(materials: Mapping[str, Any], artifacts: Mapping[str, Any]) -> None:
    """Raise MismatchArtifactError for the first path whose digests differ between the two maps."""
    for path, material in materials.items():
        artifact = artifacts.get(path)
        if artifact is None:
            continue
        if not _digest_sets_equal(material, artifact):
            raise MismatchArtifactError(artifact=artifact, material=material, path=path)


def verify_collection_artifacts(
    step: Step,
    collection: CollectionVerificationResult,
    results_by_step: Mapping[str, StepResult],
) -> None:
    """Raise unless the collection's materials agree with the artifacts of every step it draws from."""
    materials = _call_digest_map(collection.collection, "materials")
    reasons: list[str] = []
    for artifacts_from in step.artifacts_from:
        source_result = results_by_step.get(artifacts_from)
        accepted: list[CollectionVerificationResult] = []
        for candidate in source_result.passed if source_result else []:
            try:
                compare_artifacts(materials, _call_digest_map(candidate.collection, "artifacts"))
            except MismatchArtifactError as err:
                collection.warnings.append(f"failed to verify artifacts for step {step.name}: {err}")
                reasons.append(str(err))
                break
            accepted.append(candidate)

        if not accepted:
            raise VerifyArtifactsFailedError(reasons)


def _back_ref_digests(collection: Any) -> list[str]:
    digests: list[str] = []
    for digest_set in _call_digest_map(collection, "back_refs").values():
        digests.extend(dict(digest_set).values())
    return digests


@dataclass
class Policy:
    """The steps of a supply chain and the roots and keys trusted to sign for them."""

    expires: datetime = field(default_factory=_zero_time)
    roots: dict[str, Root] = field(default_factory=dict)
    timestamp_authorities: dict[str, Root] = field(default_factory=dict)
    public_keys: dict[str, PublicKey] = field(default_factory=dict)
    steps: dict[str, Step] = field(default_factory=dict)
    rego_evaluator: Optional[RegoEvaluator] = field(default=None, compare=False, repr=False)

    def public_key_verifiers(self, verifier_factory: Callable[[PublicKey], Any]) -> dict[str, Any]:
        """Build a verifier for each embedded public key, keyed by key ID.

        ``verifier_factory`` turns a PublicKey into a verifier offering ``key_id()``.
        Raises KeyIDMismatchError if a verifier's key ID differs from the policy's.
        """
        verifiers: dict[str, Any] = {}
        for public_key in self.public_keys.values():
            verifier = verifier_factory(public_key)
            key_id = verifier.key_id()
            if key_id != public_key.key_id:
                raise KeyIDMismatchError(expected=public_key.key_id, actual=key_id)
            verifiers[key_id] = verifier
        return verifiers

    def trust_bundles(self) -> dict[str, TrustBundle]:
        """The policy's roots and intermediates, keyed by root ID."""
        return _trust_bundles_from_roots(self.roots)

    def timestamp_authority_trust_bundles(self) -> dict[str, TrustBundle]:
        return _trust_bundles_from_roots(self.timestamp_authorities)

    def verify(
        self,
        verified_source: Optional[VerifiedSource],
        subject_digests: Optional[Sequence[str]],
        search_depth: int = DEFAULT_SEARCH_DEPTH,
        now: Optional[datetime] = None,
    ) -> tuple[bool, dict[str, StepResult]]:
        """Search for and check the collections of every step.

        Returns whether every step passed, and the result of each step by name.
        """
        if verified_source is None:
            raise InvalidOptionError("verified source", "a verified attestation source is required")
        digests = list(subject_digests or [])
        if not digests:
            raise InvalidOptionError("subject digests", "at least one subject digest is required")
        if search_depth < 1:
            raise InvalidOptionError("search depth", "search depth must be at least 1")

        current = _aware(now if now is not None else datetime.now(timezone.utc))
        if current > _aware(self.expires):
            raise PolicyExpiredError(self.expires)

        trust_bundles = self.trust_bundles()
        attestations_by_step = {
            name: [att.type for att in step.attestations] for name, step in self.steps.items()
        }

        results_by_step: dict[str, StepResult] = {}
        for _ in range(search_depth):
            for step_name, step in self.steps.items():
                collections = list(
                    verified_source.search(
                        step_name, list(digests), attestations_by_step.get(step_name, [])
                    )
                )
                if not collections:
                    collections = [
                        CollectionVerificationResult(errors=[NoCollectionsError(step_name)])
                    ]

                checked = step.check_functionaries(collections, trust_bundles)
                step_result = step.validate_attestations(checked.passed, self.rego_evaluator)
                step_result.rejected.extend(checked.rejected)

                existing = results_by_step.get(step_name)
                if existing is None or not existing.step:
                    results_by_step[step_name] = step_result
                else:
                    existing.passed.extend(step_result.passed)
                    existing.rejected.extend(step_result.rejected)

                for coll in step_result.passed:
                    digests.extend(_back_ref_digests(coll.collection))

        try:
            self._verify_artifacts(results_by_step)
        except PolicyError as err:
            raise PolicyError(f"failed to verify artifacts: {err}") from err

        results = [result.analyze() for result in results_by_step.values()]
        return all(results), results_by_step

    def _verify_artifacts(self, results_by_step: dict[str, StepResult]) -> None:
        """Reject the steps whose materials do not match the artifacts of the steps they draw from."""
        for step in self.steps.values():
            result = results_by_step.get(step.name)
            if result is None or not result.passed:
                if result is None:
                    raise PolicyError(f"failed to find step {step.name} in step results map")
                result.rejected.append(
                    RejectedCollection(
                        CollectionVerificationResult(),
                        PolicyError(
                            f"failed to verify artifacts for step {step.name}: "
                            "no passed collections present"
                        ),
                    )
                )
                continue

            reasons: list[BaseException] = []
            accepted = False
            for collection in result.passed:
                try:
                    verify_collection_artifacts(step, collection, results_by_step)
                except PolicyError as err:
                    reasons.append(err)
                else:
                    accepted = True

            if not accepted:
                message = f"failed to verify artifacts for step {step.name}: " + "".join(
                    f"\n{reason}" for reason in reasons
                )
                result.rejected.append(
                    RejectedCollection(CollectionVerificationResult(), PolicyError(message))
                )
                result.passed = []