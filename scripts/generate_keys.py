"""
Script para generar las claves RSA (RS256) con las que se firman los JWT.
Ejecutar una vez antes de iniciar la aplicación:

    python scripts/generate_keys.py [--force]
"""

import sys
from pathlib import Path

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa


def write_rsa_keys(keys_dir: Path) -> tuple[Path, Path]:
    """Genera un par RSA 2048 en `keys_dir` (private.pem / public.pem)."""
    keys_dir.mkdir(parents=True, exist_ok=True)
    private_key_path = keys_dir / "private.pem"
    public_key_path = keys_dir / "public.pem"

    private_key = rsa.generate_private_key(
        public_exponent=65537,
        key_size=2048,
    )
    private_key_path.write_bytes(private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ))
    public_key_path.write_bytes(private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ))
    return private_key_path, public_key_path


def main() -> None:
    keys_dir = Path(__file__).parent.parent / "keys"
    force = "--force" in sys.argv[1:]

    if (keys_dir / "private.pem").exists() and not force:
        print(f"Las claves ya existen en {keys_dir}")
        response = input("¿Desea regenerarlas? (s/N): ").strip().lower()
        if response != "s":
            print("Cancelado.")
            return

    private_key_path, public_key_path = write_rsa_keys(keys_dir)
    print(f"Clave privada generada: {private_key_path}")
    print(f"Clave pública generada: {public_key_path}")

    print("\nAgrega las rutas a tu .env:")
    print("   JWT_PRIVATE_KEY_PATH=./keys/private.pem")
    print("   JWT_PUBLIC_KEY_PATH=./keys/public.pem")


if __name__ == "__main__":
    main()
