#!/usr/bin/env python3
"""Generate the RSA key pair used to sign and encrypt access tokens.
Usage: python scripts/setup_keys.py [keys_dir]
Writes private.key / public.key plus single-line copies for .env (JWT_PRIVATE_KEY / JWT_PUBLIC_KEY)."""
import os
import sys
from pathlib import Path

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

KEY_SIZE = 2048


def generate_pem_pair(key_size: int = KEY_SIZE) -> tuple[str, str]:
    key = rsa.generate_private_key(public_exponent=65537, key_size=key_size)
    private_pem = key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("utf-8")
    public_pem = (
        key.public_key()
        .public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )
        .decode("utf-8")
    )
    return private_pem, public_pem


def to_env_value(pem: str) -> str:
    return pem.strip().replace("\r\n", "\n").replace("\n", "\\n")


def main() -> int:
    keys_dir = Path(sys.argv[1]) if len(sys.argv) > 1 else Path(__file__).resolve().parent.parent / "keys"
    private_path = keys_dir / "private.key"
    public_path = keys_dir / "public.key"
    if private_path.exists() or public_path.exists():
        print(f"Keys already exist in {keys_dir}. Delete them first if you really want to regenerate.")
        return 1
    keys_dir.mkdir(parents=True, exist_ok=True)

    print(f"Generating {KEY_SIZE}-bit RSA key pair...")
    private_pem, public_pem = generate_pem_pair()
    private_path.write_text(private_pem)
    os.chmod(private_path, 0o600)
    public_path.write_text(public_pem)
    os.chmod(public_path, 0o644)
    (keys_dir / "private_env.txt").write_text(to_env_value(private_pem))
    os.chmod(keys_dir / "private_env.txt", 0o600)
    (keys_dir / "public_env.txt").write_text(to_env_value(public_pem))

    print(f"Keys written to {keys_dir}")
    print("Set JWT_PRIVATE_KEY / JWT_PUBLIC_KEY from private_env.txt / public_env.txt. Never commit keys/.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
