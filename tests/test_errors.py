from datetime import datetime, timezone

import pytest

from attestkit.policy.errors import (
    ArtifactCycleError,
    ConstraintCheckFailedError,
    InvalidOptionError,
    KeyIDMismatchError,
    MismatchArtifactError,
    MissingAttestationError,
    NoCollectionsError,
    PolicyDeniedError,
    PolicyError,
    PolicyExpiredError,
    RegoInvalidDataError,
    UnknownStepError,
    VerifyArtifactsFailedError,
)


def test_verify_artifacts_failed_message():
    err = VerifyArtifactsFailedError(["mismatched digests for testfile"])
    assert str(err) == "failed to verify artifacts: [mismatched digests for testfile]"
    assert err.reasons == ["mismatched digests for testfile"]


def test_mismatch_artifact_keeps_fields():
    err = MismatchArtifactError({"sha256": "a"}, {"sha256": "b"}, "testfile")
    assert str(err) == "mismatched digests for testfile"
    assert err.artifact == {"sha256": "a"}
    assert err.material == {"sha256": "b"}


@pytest.mark.parametrize(
    "err, prefix, fragment",
    [
        (NoCollectionsError("build"), "no collections found for step", "build"),
        (MissingAttestationError("build", "git"), "missing attestation in collection for step", "git"),
        (KeyIDMismatchError("abc", "def"), "public key in policy has expected key id", "def"),
        (UnknownStepError("deploy"), "policy has no step named", "deploy"),
        (ArtifactCycleError("a -> b"), "cycle detected in step's artifact dependencies:", "a -> b"),
        (InvalidOptionError("search depth", "too low"), "invalid option (search depth):", "too low"),
        (PolicyDeniedError(["r1", "r2"]), "policy was denied due to:", "r1, r2"),
    ],
)
def test_messages(err, prefix, fragment):
    assert isinstance(err, PolicyError)
    assert str(err).startswith(prefix)
    assert fragment in str(err)


def test_policy_expired_includes_time():
    when = datetime(2020, 1, 1, tzinfo=timezone.utc)
    err = PolicyExpiredError(when)
    assert err.expires == when
    assert str(when) in str(err)


def test_rego_invalid_data_names_type():
    err = RegoInvalidDataError("data.test.deny", "string", 0)
    assert "expected string" in str(err)
    assert str(err).endswith(type(0).__name__)


def test_constraint_check_failed_quotes_errors():
    inner = [PolicyError("first"), PolicyError('with "quote"')]
    err = ConstraintCheckFailedError(inner)
    assert err.errors == inner
    assert '"first"' in str(err)
    assert '\\"quote\\"' in str(err)
    assert str(err).startswith("cert failed constraints check: [")


def test_policy_denied_is_policy_error():
    err = PolicyDeniedError(["nope"])
    assert isinstance(err, PolicyError)
    assert err.reasons == ["nope"]
    assert str(err) == "policy was denied due to: nope"