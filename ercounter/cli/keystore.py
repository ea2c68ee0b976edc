# MIT License
# Copyright (c) 2025 Hashborn

import os
import json
import time
from typing import List, Dict, Optional
from ..protocol.crypto.keys import generate_private_key, public_key_from_private, PRIVATE_KEY_LENGTH
from ..protocol.crypto.addresses import encode_address

KEYSTORE_DIR = os.path.expanduser("~/.ercounter/keys")
SOLANA_KEYPAIR_PATH = os.path.expanduser("~/.config/solana/id.json")

class KeyStore:
    def __init__(self, root_dir: str = KEYSTORE_DIR):
        self.root_dir = root_dir
        os.makedirs(self.root_dir, exist_ok=True)

    def _key_data(self, name: str, priv: bytes) -> Dict[str, str]:
        pub = public_key_from_private(priv)
        return {
            "name": name,
            "address": encode_address(pub),
            "public_key": pub.hex(),
            "private_key": priv.hex(),
            "created_at": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())
        }

    def create_key(self, name: str) -> Dict[str, str]:
        """Generates and saves a new key."""
        if self.get_key(name):
            raise ValueError(f"Key '{name}' already exists")

        key_data = self._key_data(name, generate_private_key())
        self._save_key_file(name, key_data)
        return key_data

    def import_key(self, name: str, private_key_hex: str) -> Dict[str, str]:
        """Imports an existing 32-byte ed25519 seed given as hex."""
        if self.get_key(name):
            raise ValueError(f"Key '{name}' already exists")

        try:
            priv = bytes.fromhex(private_key_hex)
        except ValueError:
            raise ValueError("Invalid hex string")
        if len(priv) != PRIVATE_KEY_LENGTH:
            raise ValueError("Invalid private key length")

        key_data = self._key_data(name, priv)
        self._save_key_file(name, key_data)
        return key_data

    def import_solana_keypair(self, name: str, path: str = SOLANA_KEYPAIR_PATH) -> Dict[str, str]:
        """
        Imports a Solana CLI keypair file: a JSON array of 64 bytes,
        seed followed by public key.
        """
        if self.get_key(name):
            raise ValueError(f"Key '{name}' already exists")

        with open(os.path.expanduser(path), "r") as f:
            raw = json.load(f)
        if not isinstance(raw, list) or len(raw) != 64:
            raise ValueError(f"{path} is not a 64-byte keypair array")

        keypair = bytes(raw)
        priv, pub = keypair[:32], keypair[32:]
        if public_key_from_private(priv) != pub:
            raise ValueError(f"{path}: public key does not match secret key")

        key_data = self._key_data(name, priv)
        self._save_key_file(name, key_data)
        return key_data

    def get_key(self, name: str) -> Optional[Dict[str, str]]:
        """Loads key by name."""
        path = os.path.join(self.root_dir, f"{name}.json")
        if not os.path.exists(path):
            return None

        try:
            with open(path, "r") as f:
                return json.load(f)
        except (OSError, ValueError):
            return None

    def private_key(self, name: str) -> bytes:
        key = self.get_key(name)
        if not key:
            raise ValueError(f"Key '{name}' not found")
        return bytes.fromhex(key["private_key"])

    def list_keys(self) -> List[Dict[str, str]]:
        """Lists all available keys (without private info)."""
        keys = []
        for filename in sorted(os.listdir(self.root_dir)):
            if filename.endswith(".json"):
                data = self.get_key(filename[:-5])
                if data:
                    keys.append({
                        "name": data["name"],
                        "address": data["address"],
                        "public_key": data["public_key"]
                    })
        return keys

    def delete_key(self, name: str) -> bool:
        path = os.path.join(self.root_dir, f"{name}.json")
        if os.path.exists(path):
            os.remove(path)
            return True
        return False

    def _save_key_file(self, name: str, data: Dict[str, str]):
        path = os.path.join(self.root_dir, f"{name}.json")
        with open(path, "w") as f:
            json.dump(data, f, indent=2)
        # Secure permissions
        os.chmod(path, 0o600)
