"""
examples/credential_workflow.py
End-to-end example: Issue → Sign → Present → Spend → Replay
"""
import json
import sys
import os

# Add src to path for development
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from zero_reveal_credentials import (
    CredentialRegistry,
    NullifierRegistry,
    Settings,
    build_circuit_input,
    compose_verification,
    generate_keypair,
    prepare_inputs,
    public_signals,
    setup_logging,
    sign_credential,
    validate_proof,
)

HEIGHT = 4

setup_logging(log_level="WARNING")
settings = Settings(merkle_tree_height=HEIGHT)

# ============================================================
# STEP 1: ISSUER - Commit the credential
# ============================================================

print("=" * 60)
print("ZERO-REVEAL CREDENTIALS: Private credential presentation")
print("=" * 60)
print()

credentials = CredentialRegistry(settings=settings)
nullifiers = NullifierRegistry(settings=settings)

attributes = {
    "exam_id": "EXAM_LOCAL",
    "achievement_level": "Passed",
    "issuer": "LocalIssuer",
    "holder_secret": "0xabcdef1234",
}

# A second credential so the tree is not trivially small
credentials.register("EXAM_OTHER", "Distinction", "LocalIssuer", "0x42")
index, cred_hash = credentials.register(**attributes)

print(f"✓ Credential committed at index {index}")
print(f"✓ Credential root: {credentials.root}")

# ============================================================
# STEP 2: Sign the credential hash (Ed25519)
# ============================================================

private_key, public_key = generate_keypair()
signature = sign_credential(private_key, cred_hash)

print(f"✓ Credential hash signed")
print(f"✓ Public key: {public_key.hex()}")

# ============================================================
# STEP 3: HOLDER - Build the presentation
# ============================================================

print()
print("-" * 60)
print("PRESENTATION")
print("-" * 60)

nullifier = "0x1234"
credential_tree = credentials.snapshot()
nullifier_tree = nullifiers.snapshot()

inputs = prepare_inputs(
    credential_tree,
    nullifier_tree,
    index,
    nullifiers.slot(nullifier),
    nullifier=nullifier,
    pub_key=public_key,
    signature=signature,
    current_time=1700000000,
    **attributes
)

proof = inputs.credential_path
print(f"\n✓ Inclusion proof extracted:")
print(f"  - Path length: {proof.height} hashes")
print(f"  - Valid: {validate_proof(cred_hash, proof.siblings, proof.path_indices, credential_tree.root, HEIGHT)}")

circuit_input = build_circuit_input(inputs, HEIGHT)
print(f"\n✓ Circuit input prepared ({len(circuit_input)} signals)")
print(json.dumps({k: circuit_input[k] for k in ('credentialRoot', 'nullifier')}, indent=2))

# ============================================================
# STEP 4: VERIFIER - Check the relation
# ============================================================

print()
print("-" * 60)
print("VERIFICATION")
print("-" * 60)

result = compose_verification(inputs, HEIGHT)
signals = public_signals(result, inputs)

print(f"\n✓ Verification result:")
print(f"  - Verified: {result.verified}")
print(f"  - Credential id: {result.credential_id}")
print(f"  - Public signals: {len(signals)}")

# ============================================================
# STEP 5: Spend the nullifier and replay
# ============================================================

nullifiers.mark_spent(nullifier)

replay = prepare_inputs(
    credentials.snapshot(),
    nullifiers.snapshot(),
    index,
    nullifiers.slot(nullifier),
    nullifier=nullifier,
    pub_key=public_key,
    signature=signature,
    current_time=1700000060,
    **attributes
)
replay_result = compose_verification(replay, HEIGHT)

print(f"\n✓ Replay after spending:")
print(f"  - Verified: {replay_result.verified}")
print(f"  - Nullifier valid: {replay_result.nullifier_valid}")

print()
print("=" * 60)
print("COMPLETE WORKFLOW SUCCESSFUL")
print("=" * 60)
