"""Supply-chain attestation building blocks: in-toto statements, registries, policy checks and logging."""

__version__ = "0.1.0"