"""Declaration helpers shared by the test modules."""

from pathlib import Path
from typing import Any

from apex_bundler.config import Settings

BUNDLE = "com.example"
KEY = "com.example.key"

KEY_DECL = {
    "type": "apex_key",
    "name": KEY,
    "public_key": "com.example.avbpubkey",
    "private_key": "com.example.pem",
}


def bundle_decl(name: str = BUNDLE, **props: Any) -> dict[str, Any]:
    """An apex declaration signed with the shared test key."""
    return {"type": "apex", "name": name, "key": KEY, **props}


def write_file_contexts(settings: Settings, name: str) -> Path:
    path = settings.sepolicy_path / f"{name}-file_contexts"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("(/.*)? u:object_r:system_file:s0\n")
    return path
