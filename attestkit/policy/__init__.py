"""Policy model, certificate constraints, step checks and verification of attestation collections."""