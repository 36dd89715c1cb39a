# attestkit

Building blocks for recording and checking software supply-chain
attestations.

- **`attestkit.intoto`** builds in-toto statements (`Statement`, `Subject`)
  from a predicate type, a predicate and a map of subject digests.
- **`attestkit.registry`** keeps a `Registry` of named factories. Each factory
  has typed configuration options (`int_config_option`, `string_config_option`,
  `string_slice_config_option`, `bool_config_option`,
  `duration_config_option`).
- **`attestkit.policy`** checks a `Policy` against signed attestation
  collections. It covers functionaries, x509 certificate constraints
  (including Fulcio extension globs), the attestations each step expects, and
  the flow of artifacts between steps.
- **`attestkit.log`** is a swappable library logger. The default,
  `SilentLogger`, prints nothing.

## Installation

```
pip install attestkit
```

## In-toto statements

```python
from attestkit.intoto import new_statement

stmt = new_statement(
    "https://example.com/predicate/v1",
    b'{"result": "ok"}',
    {"artifact.tar": {"sha256": "a1b2c3"}},
)
print(stmt.to_json())   # compact JSON bytes
print(stmt.to_dict())   # {"_type": ..., "subject": [...], "predicateType": ..., "predicate": {...}}
```

A subject's digest set is either a mapping of hash name to digest, or an
object with a `to_name_map()` method that returns one.

## Registries

```python
from attestkit.registry import Registry, int_config_option

def set_retries(entity, value):
    entity["retries"] = value
    return entity

reg = Registry()
reg.register("fetcher", dict, int_config_option("retries", "retry count", 3, set_retries))

entity = reg.new_entity("fetcher")              # {"retries": 3}
opt = reg.options("fetcher")[0]
opt.set_prefix("fetcher")
print(opt.name)                                 # "fetcher-retries"
```

`new_entity` creates the entity, applies every option's default and then any
extra setters given to it. It raises `KeyError` for an unknown name.
`options` and `entry` return `None` for an unknown name. `set_options(entity,
*setters)` applies setters in turn.

## Policy verification

A `Policy` (in `attestkit.policy.policy`) holds an expiry time, trusted
`roots` and `timestamp_authorities` (`Root`, PEM or DER), `public_keys`
(`PublicKey`) and `steps` (`Step`, in `attestkit.policy.step`).

```python
from datetime import datetime, timedelta, timezone

from attestkit.intoto import Statement
from attestkit.policy.policy import Policy
from attestkit.policy.step import (
    COLLECTION_TYPE, CollectionVerificationResult, Functionary, Step,
)

class KeyVerifier:
    def key_id(self):
        return "key-1"

class Source:
    def __init__(self, results):
        self.results = results

    def search(self, collection_name, subject_digests, attestations):
        return self.results

result = CollectionVerificationResult(
    verifiers=[KeyVerifier()],
    statement=Statement(type="", subject=[], predicate_type=COLLECTION_TYPE, predicate=b""),
)
policy = Policy(
    expires=datetime.now(timezone.utc) + timedelta(hours=1),
    steps={"build": Step("build", functionaries=[Functionary("PublicKey", public_key_id="key-1")])},
)
passed, results = policy.verify(Source([result]), ["a1b2c3"])
```

`Policy.verify(verified_source, subject_digests, search_depth=3, now=None)`:

- `verified_source` is any object with a
  `search(step_name, subject_digests, attestation_types)` method that returns
  `CollectionVerificationResult` items.
- The search runs `search_depth` times over every step. The digests in each
  passed collection's `back_refs()` are added to the digests searched for.
- It returns a pass flag and a `StepResult` for each step.
  `StepResult.analyze()`, `has_passed()` and `has_errors()` summarise a step.
  `str(result)` lists why collections were rejected.

A collection object is expected to offer `name` and `attestations` (items
with `type` and `attestation`). It may also offer `materials()`,
`artifacts()` and `back_refs()`. Artifact checks compare a step's materials
with the artifacts of the steps named in its `artifacts_from`.

Verifiers need a `key_id()` method. A verifier that also has `certificate()`
and `belongs_to_root(root)` is treated as an x509 verifier and checked
against the functionary's `CertConstraint` (`attestkit.policy.constraints`).

`Policy.public_key_verifiers(verifier_factory)` turns each embedded
`PublicKey` into a verifier with a factory that you supply. It raises
`KeyIDMismatchError` when the key IDs disagree. `trust_bundles()` and
`timestamp_authority_trust_bundles()` parse the roots into `TrustBundle`s.

Failures raise subclasses of `attestkit.policy.errors.PolicyError`, such as
`PolicyExpiredError`, `KeyIDMismatchError` and `InvalidOptionError`.

## What the package does not do

- It does not evaluate Rego. If an `Attestation` carries `rego_policies`, set
  `Policy.rego_evaluator` to a callable `(attestor, policies)` that raises to
  deny. Without one, such collections are rejected.
- It does not parse public keys or reach key-management services. Verifiers
  come from the factory that you pass to `public_key_verifiers`.
- It does not sign or verify envelopes, run attestors, or fetch collections.
  It has no command-line tool.

## Logging

```python
import logging
from attestkit import log

_std = logging.getLogger("attestkit")

class StdLogger(log.Logger):
    def errorf(self, fmt, *args): _std.error(fmt, *args)
    def error(self, *args): _std.error(" ".join(map(str, args)))
    def warnf(self, fmt, *args): _std.warning(fmt, *args)
    def warn(self, *args): _std.warning(" ".join(map(str, args)))
    def debugf(self, fmt, *args): _std.debug(fmt, *args)
    def debug(self, *args): _std.debug(" ".join(map(str, args)))
    def infof(self, fmt, *args): _std.info(fmt, *args)
    def info(self, *args): _std.info(" ".join(map(str, args)))

log.set_logger(StdLogger())
```

`log.get_logger()` returns the logger in use. The default `SilentLogger`
counts the messages it suppresses in `suppressed`.

## Running the tests

```
pip install -e ".[test]"
pytest
```