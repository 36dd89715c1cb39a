"""Constraints that an x509 signing certificate must meet."""

from __future__ import annotations

import re
from dataclasses import dataclass, field, fields
from typing import Any, Mapping, Protocol, Sequence, runtime_checkable

from cryptography import x509
from cryptography.x509.oid import NameOID

from attestkit import log
from attestkit.policy.errors import ConstraintCheckFailedError, PolicyError, _quote_list

__all__ = [
    "ALLOW_ALL_CONSTRAINT",
    "X509Verifier",
    "FulcioExtensions",
    "parse_fulcio_extensions",
    "CertConstraint",
    "check_cert_constraint",
]

ALLOW_ALL_CONSTRAINT = "*"


@runtime_checkable
class X509Verifier(Protocol):
    """A verifier backed by an x509 certificate."""

    def key_id(self) -> str: ...

    def certificate(self) -> x509.Certificate: ...

    def belongs_to_root(self, root: Any) -> None:
        """Raise if the certificate does not chain to ``root``."""


@dataclass(frozen=True)
class FulcioExtensions:
    """Fulcio certificate extension values; as a constraint, each field is a glob."""

    issuer: str = ""
    github_workflow_trigger: str = ""
    github_workflow_sha: str = ""
    github_workflow_name: str = ""
    github_workflow_repository: str = ""
    github_workflow_ref: str = ""
    build_signer_uri: str = ""
    build_signer_digest: str = ""
    runner_environment: str = ""
    source_repository_uri: str = ""
    source_repository_digest: str = ""
    source_repository_ref: str = ""
    source_repository_identifier: str = ""
    source_repository_owner_uri: str = ""
    source_repository_owner_identifier: str = ""
    build_config_uri: str = ""
    build_config_digest: str = ""
    build_trigger: str = ""
    run_invocation_uri: str = ""
    source_repository_visibility_at_signing: str = ""


_FULCIO_ARC = "1.3.6.1.4.1.57264.1."

# Deprecated extensions hold the raw string.
_RAW_OIDS = {
    _FULCIO_ARC + "1": "issuer",
    _FULCIO_ARC + "2": "github_workflow_trigger",
    _FULCIO_ARC + "3": "github_workflow_sha",
    _FULCIO_ARC + "4": "github_workflow_name",
    _FULCIO_ARC + "5": "github_workflow_repository",
    _FULCIO_ARC + "6": "github_workflow_ref",
}

# Current extensions hold a DER-encoded UTF8String.
_DER_OIDS = {
    _FULCIO_ARC + "8": "issuer",
    _FULCIO_ARC + "9": "build_signer_uri",
    _FULCIO_ARC + "10": "build_signer_digest",
    _FULCIO_ARC + "11": "runner_environment",
    _FULCIO_ARC + "12": "source_repository_uri",
    _FULCIO_ARC + "13": "source_repository_digest",
    _FULCIO_ARC + "14": "source_repository_ref",
    _FULCIO_ARC + "15": "source_repository_identifier",
    _FULCIO_ARC + "16": "source_repository_owner_uri",
    _FULCIO_ARC + "17": "source_repository_owner_identifier",
    _FULCIO_ARC + "18": "build_config_uri",
    _FULCIO_ARC + "19": "build_config_digest",
    _FULCIO_ARC + "20": "build_trigger",
    _FULCIO_ARC + "21": "run_invocation_uri",
    _FULCIO_ARC + "22": "source_repository_visibility_at_signing",
}


def _decode_der_utf8(raw: bytes) -> str:
    if len(raw) < 2 or raw[0] != 0x0C:
        raise ValueError("expected a DER UTF8String")
    length = raw[1]
    pos = 2
    if length & 0x80:
        count = length & 0x7F
        if count == 0 or count > 4 or len(raw) < 2 + count:
            raise ValueError("malformed DER length")
        length = int.from_bytes(raw[2 : 2 + count], "big")
        pos = 2 + count
    if pos + length != len(raw):
        raise ValueError("DER length does not match the data")
    return raw[pos:].decode("utf-8")


def parse_fulcio_extensions(extensions: x509.Extensions) -> FulcioExtensions:
    """Read the Fulcio extension values from a certificate's extensions."""
    values: dict[str, str] = {}
    for ext in extensions:
        oid = ext.oid.dotted_string
        if oid not in _RAW_OIDS and oid not in _DER_OIDS:
            continue
        raw = getattr(ext.value, "value", None)
        if not isinstance(raw, bytes):
            continue
        if oid in _RAW_OIDS:
            values[_RAW_OIDS[oid]] = raw.decode("utf-8")
        else:
            values[_DER_OIDS[oid]] = _decode_der_utf8(raw)
    return FulcioExtensions(**values)


def _compile_glob(pattern: str) -> re.Pattern[str]:
    out: list[str] = []
    depth = 0
    i = 0
    while i < len(pattern):
        c = pattern[i]
        if c == "\\" and i + 1 < len(pattern):
            out.append(re.escape(pattern[i + 1]))
            i += 2
            continue
        if c == "*":
            out.append(".*")
        elif c == "?":
            out.append(".")
        elif c == "[":
            end = pattern.find("]", i + 1)
            if end == -1 or end == i + 1:
                raise PolicyError(f"invalid glob pattern {pattern!r}")
            body = pattern[i + 1 : end]
            negate = body[:1] in ("!", "^")
            if negate:
                body = body[1:]
            out.append("[" + ("^" if negate else "") + body.replace("\\", "\\\\") + "]")
            i = end + 1
            continue
        elif c == "{":
            out.append("(?:")
            depth += 1
        elif c == "}" and depth:
            out.append(")")
            depth -= 1
        elif c == "," and depth:
            out.append("|")
        else:
            out.append(re.escape(c))
        i += 1
    if depth:
        raise PolicyError(f"invalid glob pattern {pattern!r}")
    return re.compile("".join(out), re.DOTALL)


def check_cert_constraint(attribute: str, constraints: Sequence[str], values: Sequence[str]) -> None:
    """Raise unless ``values`` are exactly the allowed ``constraints``."""
    constraints = list(constraints)
    values = list(values)
    if constraints == [ALLOW_ALL_CONSTRAINT]:
        return
    if constraints == [""]:
        constraints = []
    if values == [""]:
        values = []

    if not constraints and values:
        raise PolicyError(
            f"not expecting any {attribute}(s), but cert has {len(values)} {attribute}(s)"
        )

    unmet = set(constraints)
    for value in values:
        if value not in unmet:
            raise PolicyError(
                f"cert has an unexpected {attribute} {value} given constraints {_quote_list(constraints)}"
            )
        unmet.discard(value)

    if unmet:
        raise PolicyError(
            f"cert with {attribute}(s) {_quote_list(values)}"
            f"Did not pass all constraints {_quote_list(constraints)}"
        )


def _name_values(name: x509.Name, oid: x509.ObjectIdentifier) -> list[str]:
    return [str(attr.value) for attr in name.get_attributes_for_oid(oid)]


def _san_values(cert: x509.Certificate, kind: type) -> list[str]:
    try:
        san = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
    except x509.ExtensionNotFound:
        return []
    return [str(v) for v in san.get_values_for_type(kind)]


@dataclass
class CertConstraint:
    """Allowed subject attributes, roots and Fulcio extensions of a certificate."""

    common_name: str = ""
    dns_names: list[str] = field(default_factory=list)
    emails: list[str] = field(default_factory=list)
    organizations: list[str] = field(default_factory=list)
    uris: list[str] = field(default_factory=list)
    roots: list[str] = field(default_factory=list)
    extensions: FulcioExtensions = field(default_factory=FulcioExtensions)

    def check(self, verifier: X509Verifier, trust_bundles: Mapping[str, Any]) -> None:
        """Raise ConstraintCheckFailedError listing every constraint the certificate fails."""
        cert = verifier.certificate()
        common_names = _name_values(cert.subject, NameOID.COMMON_NAME)
        attribute_checks = [
            ("common name", [self.common_name], [common_names[0] if common_names else ""]),
            ("dns name", self.dns_names, _san_values(cert, x509.DNSName)),
            ("email", self.emails, _san_values(cert, x509.RFC822Name)),
            ("organization", self.organizations, _name_values(cert.subject, NameOID.ORGANIZATION_NAME)),
            ("uri", self.uris, _san_values(cert, x509.UniformResourceIdentifier)),
        ]

        errors: list[BaseException] = []
        for attribute, constraints, values in attribute_checks:
            try:
                check_cert_constraint(attribute, constraints, values)
            except PolicyError as err:
                errors.append(err)

        for check in (
            lambda: self._check_trust_bundles(verifier, trust_bundles),
            lambda: self._check_extensions(cert),
        ):
            try:
                check()
            except PolicyError as err:
                errors.append(err)

        if errors:
            raise ConstraintCheckFailedError(errors)

    def _check_trust_bundles(self, verifier: X509Verifier, trust_bundles: Mapping[str, Any]) -> None:
        if self.roots == [ALLOW_ALL_CONSTRAINT]:
            candidates = list(trust_bundles.values())
        else:
            candidates = [trust_bundles[r] for r in self.roots if r in trust_bundles]

        for bundle in candidates:
            try:
                verifier.belongs_to_root(bundle.root)
            except Exception:
                continue
            return

        raise PolicyError(
            f"cert doesn't belong to any root specified by constraint {_quote_list(self.roots)}"
        )

    def _check_extensions(self, cert: x509.Certificate) -> None:
        try:
            actual = parse_fulcio_extensions(cert.extensions)
        except ValueError as err:
            raise PolicyError(f"error parsing fulcio cert extensions: {err}") from err

        for f in fields(FulcioExtensions):
            pattern = getattr(self.extensions, f.name)
            if not pattern:
                log.debugf("No constraint for field %s, allowing all values", f.name)
                continue
            if not _compile_glob(pattern).fullmatch(getattr(actual, f.name)):
                raise PolicyError(
                    f"cert field {f.name} doesn't match constraint {_quote_list([pattern])[1:-1]}"
                )