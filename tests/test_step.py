from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from attestkit.intoto import Statement
from attestkit.policy.constraints import CertConstraint
from attestkit.policy.errors import PolicyDeniedError, PolicyError
from attestkit.policy.step import (
    COLLECTION_TYPE,
    Attestation,
    CollectionVerificationResult,
    Functionary,
    RegoPolicy,
    RejectedCollection,
    Step,
    StepResult,
)


class KeyVerifier:
    def __init__(self, key_id):
        self._key_id = key_id

    def key_id(self):
        return self._key_id


class BrokenVerifier:
    def key_id(self):
        raise RuntimeError("no key")


class CertVerifier:
    def __init__(self, cert):
        self._cert = cert

    def key_id(self):
        return "cert-key"

    def certificate(self):
        return self._cert

    def belongs_to_root(self, root):
        if root != "root":
            raise PolicyError("wrong root")


def _make_cert():
    key = ec.generate_private_key(ec.SECP256R1())
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "Test Leaf")])
    now = datetime.now(timezone.utc)
    return (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now)
        .not_valid_after(now + timedelta(days=1))
        .sign(key, hashes.SHA256())
    )


def _statement(predicate_type=COLLECTION_TYPE):
    return Statement(type="", subject=[], predicate_type=predicate_type, predicate=b"")


def _collection(name, *types):
    return SimpleNamespace(
        name=name,
        attestations=[SimpleNamespace(type=t, attestation={"type": t}) for t in types],
    )


STEP = Step(
    name="step1",
    functionaries=[Functionary(type="PublicKey", public_key_id="key-0")],
    attestations=[Attestation(type="dummy-prods"), Attestation(type="dummy-mats")],
)


def test_simple_one_functionary_pass():
    v0 = KeyVerifier("key-0")
    result = STEP.check_functionaries(
        [CollectionVerificationResult(verifiers=[v0], statement=_statement())], None
    )
    assert len(result.passed) == 1
    assert result.passed[0].valid_functionaries == [v0]
    assert result.passed[0].warnings == []
    assert result.rejected == []


def test_invalid_functionary():
    result = STEP.check_functionaries(
        [CollectionVerificationResult(verifiers=[KeyVerifier("key-1")], statement=_statement())], {}
    )
    assert result.passed == []
    assert len(result.rejected) == 1
    collection = result.rejected[0].collection
    assert collection.valid_functionaries == []
    assert collection.warnings == [
        "failed to validate functionary of KeyID key-0 in step step1: "
        "verifier with ID key-1 is not a public key verifier or a x509 verifier"
    ]


def test_no_verifiers_rejected():
    result = STEP.check_functionaries([CollectionVerificationResult(statement=_statement())], {})
    assert result.passed == []
    assert "no verifiers present" in str(result.rejected[0].reason)


def test_wrong_predicate_type_rejected():
    result = STEP.check_functionaries(
        [CollectionVerificationResult(verifiers=[KeyVerifier("key-0")], statement=_statement("other"))],
        {},
    )
    assert any("is not a collection predicate type" in str(r.reason) for r in result.rejected)


def test_functionary_key_id_errors():
    with pytest.raises(PolicyError, match="could not get key id"):
        Functionary(type="PublicKey", public_key_id="key-0").validate(BrokenVerifier(), {})


def test_x509_functionary_requires_roots():
    verifier = CertVerifier(_make_cert())
    with pytest.raises(PolicyError, match="no trusted roots provided in functionary"):
        Functionary(type="root").validate(verifier, {})


def test_x509_functionary_with_constraint():
    verifier = CertVerifier(_make_cert())
    constraint = CertConstraint(common_name="Test Leaf", roots=["r1"])
    bundles = {"r1": SimpleNamespace(root="root")}
    assert Functionary(type="root", cert_constraint=constraint).validate(verifier, bundles) is None

    bad = CertConstraint(common_name="Someone", roots=["r1"])
    with pytest.raises(PolicyError, match="doesn't meet certificate constraint"):
        Functionary(type="root", cert_constraint=bad).validate(verifier, bundles)


def test_validate_attestations_pass_and_missing():
    complete = CollectionVerificationResult(collection=_collection("step1", "dummy-prods", "dummy-mats"))
    partial = CollectionVerificationResult(collection=_collection("step1", "dummy-prods"))
    other = CollectionVerificationResult(collection=_collection("step2", "dummy-prods", "dummy-mats"))
    result = STEP.validate_attestations([complete, partial, other])
    assert result.passed == [complete]
    assert len(result.rejected) == 1
    assert result.rejected[0].collection is partial
    reason = str(result.rejected[0].reason)
    assert reason.startswith("collection validation failed:\n - ")
    assert "missing attestation in collection for step step1: dummy-mats" in reason


def test_validate_attestations_collection_errors():
    failed = CollectionVerificationResult(
        collection=_collection("step1", "dummy-prods", "dummy-mats"),
        errors=[PolicyError("bad signature")],
    )
    result = STEP.validate_attestations([failed])
    assert result.passed == []
    assert "collection verification failed: bad signature" in str(result.rejected[0].reason)


def test_validate_attestations_rego():
    seen = []

    def evaluator(attestor, policies):
        seen.append((attestor, [p.name for p in policies]))
        raise PolicyDeniedError(["unexpected cmd"])

    step = Step(
        name="step1",
        attestations=[Attestation(type="cmd", rego_policies=[RegoPolicy(module=b"package test", name="expected command")])],
    )
    coll = CollectionVerificationResult(collection=_collection("step1", "cmd"))
    result = step.validate_attestations([coll], evaluator)
    assert seen == [({"type": "cmd"}, ["expected command"])]
    assert "unexpected cmd" in str(result.rejected[0].reason)

    allowed = step.validate_attestations([coll], lambda attestor, policies: None)
    assert allowed.passed == [coll]


def test_analyze():
    clean = CollectionVerificationResult(warnings=["minor"])
    dirty = CollectionVerificationResult(errors=[PolicyError("boom")])
    assert StepResult(step="s", passed=[clean]).analyze() is True
    assert StepResult(step="s", passed=[clean, dirty]).analyze() is False
    assert StepResult(step="s").analyze() is False


def test_result_flags_and_message():
    rejected = RejectedCollection(CollectionVerificationResult(), PolicyError("reason one"))
    result = StepResult(step="step1", rejected=[rejected])
    assert result.has_errors() is True
    assert result.has_passed() is False
    assert result.error().startswith("attestations for step step1 could not be used due to:\n")
    assert result.error().endswith("reason one")
    assert str(result) == result.error()