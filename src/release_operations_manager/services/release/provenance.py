"""Chart provenance verification.

A ``.prov`` file is a clear-signed message whose body holds the chart
metadata followed by a ``files:`` map of archive name to ``sha256:<hex>``.
Verification runs ``gpg --verify`` against the configured keyring, then
compares the archive digest with the signed one.
"""

from __future__ import annotations

import hashlib
import shutil
import subprocess
from pathlib import Path

import structlog
import yaml

from release_operations_manager.services.release.exceptions import SignatureVerificationError

logger = structlog.get_logger()

GPG_TIMEOUT_SECONDS = 60
_SIGNED_HEADER = "-----BEGIN PGP SIGNED MESSAGE-----"
_SIGNATURE_HEADER = "-----BEGIN PGP SIGNATURE-----"


def signed_files(provenance_text: str) -> dict[str, str]:
    """Return the ``files:`` map of a clear-signed provenance message.

    Raises:
        ValueError: If the message is not clear-signed or lists no files.
    """
    if _SIGNED_HEADER not in provenance_text or _SIGNATURE_HEADER not in provenance_text:
        raise ValueError("not a clear-signed message")

    body = provenance_text.split(_SIGNED_HEADER, 1)[1].split(_SIGNATURE_HEADER, 1)[0]
    # Armor headers ("Hash: SHA512") end at the first blank line.
    _, _, body = body.lstrip("\n").partition("\n\n")

    for document in yaml.safe_load_all(body):
        if isinstance(document, dict) and isinstance(document.get("files"), dict):
            return {str(k): str(v) for k, v in document["files"].items()}
    raise ValueError("no files section in provenance")


class ProvenanceVerifier:
    """Verify chart archives against provenance files with gpg."""

    def __init__(self, keyring: Path, gpg_binary: str | None = None) -> None:
        self._keyring = keyring
        self._gpg = gpg_binary or shutil.which("gpg") or "gpg"
        self._log = logger.bind(keyring=str(keyring))

    def _verify_signature(self, provenance: Path, archive: Path) -> None:
        cmd = [
            self._gpg,
            "--batch",
            "--no-default-keyring",
            "--keyring",
            str(self._keyring),
            "--verify",
            str(provenance),
        ]
        self._log.debug("running_gpg_verify", provenance=str(provenance))
        try:
            subprocess.run(cmd, capture_output=True, text=True, check=True, timeout=GPG_TIMEOUT_SECONDS)
        except FileNotFoundError as e:
            raise SignatureVerificationError(archive.name, "gpg binary not found") from e
        except subprocess.CalledProcessError as e:
            reason = e.stderr.strip() if e.stderr else f"exit code {e.returncode}"
            raise SignatureVerificationError(archive.name, reason) from e
        except subprocess.TimeoutExpired as e:
            raise SignatureVerificationError(archive.name, "gpg timed out") from e

    def verify(self, archive: Path, provenance: Path) -> str:
        """Verify signature and digest.

        Returns:
            The verified ``sha256:<hex>`` digest.

        Raises:
            SignatureVerificationError: On any verification failure.
        """
        if not self._keyring.exists():
            raise SignatureVerificationError(archive.name, f"keyring {self._keyring} does not exist")

        self._verify_signature(provenance, archive)

        try:
            files = signed_files(provenance.read_text(encoding="utf-8"))
        except (OSError, ValueError, yaml.YAMLError) as e:
            raise SignatureVerificationError(archive.name, f"invalid provenance file: {e}") from e

        expected = files.get(archive.name)
        if expected is None:
            raise SignatureVerificationError(archive.name, "archive is not listed in provenance")

        actual = "sha256:" + hashlib.sha256(archive.read_bytes()).hexdigest()
        if actual != expected:
            raise SignatureVerificationError(
                archive.name, f"digest mismatch: signed {expected}, got {actual}"
            )

        self._log.info("chart_verified", archive=archive.name)
        return actual
