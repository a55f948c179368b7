"""Template rendering through the helm binary.

Only ``helm template`` is used: rendering is delegated, while recording,
applying and CRD migration stay in the release services.
"""

from __future__ import annotations

import re
import shutil
import subprocess
import tempfile
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog
import yaml
from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError

from release_operations_manager.integrations.kubernetes.exceptions import KubernetesError
from release_operations_manager.integrations.kubernetes.models.release import HookManifest
from release_operations_manager.services.release.exceptions import RenderError
from release_operations_manager.services.release.interfaces import RenderedChart

if TYPE_CHECKING:
    from release_operations_manager.integrations.kubernetes.models.chart import Chart

logger = structlog.get_logger()

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

HELM_TIMEOUT_SECONDS = 300
VERSION_TIMEOUT_SECONDS = 10
HOOK_ANNOTATION = "helm.sh/hook"

_DOCUMENT_SEPARATOR_RE = re.compile(r"^---\s*$", re.MULTILINE)
_SOURCE_RE = re.compile(r"^# Source: (?P<path>.+)$", re.MULTILINE)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class HelmError(KubernetesError):
    """Base exception for helm binary operations."""

    def __init__(
        self,
        message: str,
        stderr: str | None = None,
        stdout: str | None = None,
    ) -> None:
        super().__init__(message=message)
        self.stderr = stderr
        self.stdout = stdout


class HelmBinaryNotFoundError(HelmError):
    """Raised when helm binary is not found in PATH."""

    def __init__(self) -> None:
        super().__init__(
            message=(
                "helm binary not found in PATH. Install from: https://helm.sh/docs/intro/install/"
            ),
        )


class HelmCommandError(HelmError):
    """Raised when a helm command fails."""


# ---------------------------------------------------------------------------
# Output parsing
# ---------------------------------------------------------------------------


def split_rendered_output(output: str) -> RenderedChart:
    """Split ``helm template`` output into the main manifest and hooks.

    Documents annotated with ``helm.sh/hook`` become hooks; everything else
    stays in the manifest with its ``# Source:`` header.
    """
    loader = YAML(typ="safe")
    manifest_parts: list[str] = []
    hooks: list[HookManifest] = []

    for chunk in _DOCUMENT_SEPARATOR_RE.split(output):
        if not chunk.strip():
            continue
        source = _SOURCE_RE.search(chunk)
        path = source.group("path").strip() if source else ""
        try:
            document = loader.load(chunk)
        except YAMLError:
            document = None

        annotations: dict[str, Any] = {}
        if isinstance(document, dict):
            annotations = (document.get("metadata") or {}).get("annotations") or {}

        if HOOK_ANNOTATION in annotations:
            body = _SOURCE_RE.sub("", chunk, count=1).strip()
            hooks.append(
                HookManifest(
                    path=path,
                    manifest=body,
                    kind=str(document.get("kind", "")) if isinstance(document, dict) else "",
                    name=str((document.get("metadata") or {}).get("name", ""))
                    if isinstance(document, dict)
                    else "",
                    events=[e.strip() for e in str(annotations[HOOK_ANNOTATION]).split(",") if e.strip()],
                )
            )
        else:
            manifest_parts.append("---\n" + chunk.strip("\n"))

    manifest = "\n".join(manifest_parts) + ("\n" if manifest_parts else "")
    return RenderedChart(manifest=manifest, hooks=hooks)


# ---------------------------------------------------------------------------
# Renderer
# ---------------------------------------------------------------------------


class HelmTemplateRenderer:
    """Render charts by running ``helm template``."""

    def __init__(self, binary_path: str | None = None, timeout: int = HELM_TIMEOUT_SECONDS) -> None:
        """Initialize the renderer.

        Args:
            binary_path: Optional explicit path to helm binary.
                If None, searches PATH.
            timeout: Timeout in seconds for a single helm invocation.

        Raises:
            HelmBinaryNotFoundError: If binary not found.
        """
        self._binary = self._find_binary(binary_path)
        self._timeout = timeout
        self._log = logger.bind(binary=self._binary)
        self._log.debug("helm_renderer_initialized")

    @property
    def binary_path(self) -> str:
        return self._binary

    @staticmethod
    def _find_binary(binary_path: str | None) -> str:
        if binary_path:
            path = Path(binary_path)
            if not path.exists():
                raise HelmBinaryNotFoundError()
            return str(path.resolve())

        found = shutil.which("helm")
        if not found:
            raise HelmBinaryNotFoundError()

        return found

    def _run(
        self,
        args: list[str],
        *,
        timeout: int | None = None,
    ) -> subprocess.CompletedProcess[str]:
        """Run a helm command.

        Raises:
            HelmCommandError: On non-zero exit.
            HelmError: On timeout.
        """
        timeout = timeout or self._timeout
        cmd = [self._binary, *args]
        self._log.debug("running_helm_command", args=args)

        try:
            return subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                check=True,
                timeout=timeout,
            )
        except subprocess.CalledProcessError as e:
            raise HelmCommandError(
                message=f"Helm command failed: {e.stderr.strip() if e.stderr else f'exit code {e.returncode}'}",
                stderr=e.stderr,
                stdout=e.stdout,
            ) from e
        except subprocess.TimeoutExpired as e:
            raise HelmError(
                message=f"Helm command timed out after {timeout}s",
            ) from e

    def get_version(self) -> str:
        """Get helm version string (e.g., ``v3.17.0``)."""
        result = self._run(["version", "--short"], timeout=VERSION_TIMEOUT_SECONDS)
        version = result.stdout.strip()
        # Strip build metadata (e.g., "v3.17.0+g301108e" -> "v3.17.0")
        if "+" in version:
            version = version.split("+")[0]
        return version

    def render(
        self,
        chart: Chart,
        values: dict[str, Any],
        *,
        release_name: str,
        namespace: str,
        include_crds: bool = False,
        is_upgrade: bool = False,
        disable_hooks: bool = False,
        kube_version: str = "",
        api_versions: tuple[str, ...] = (),
        post_renderer: str = "",
        post_renderer_args: tuple[str, ...] = (),
    ) -> RenderedChart:
        """Render *chart* with *values*.

        Raises:
            RenderError: If helm fails. Any output produced before the failure
                is attached as ``partial``.
        """
        if chart.path is None:
            raise RenderError(f"chart '{chart.name}' has no local path to render from")

        with tempfile.TemporaryDirectory(prefix="rops-render-") as tmp:
            values_file = Path(tmp) / "values.yaml"
            values_file.write_text(yaml.safe_dump(values, sort_keys=False), encoding="utf-8")

            args = [
                "template",
                release_name,
                str(chart.path),
                "--namespace",
                namespace,
                "--values",
                str(values_file),
                "--debug",
            ]
            if include_crds:
                args.append("--include-crds")
            if is_upgrade:
                args.append("--is-upgrade")
            if disable_hooks:
                args.append("--no-hooks")
            if kube_version:
                args.extend(["--kube-version", kube_version])
            for api_version in api_versions:
                args.extend(["--api-versions", api_version])
            if post_renderer:
                args.extend(["--post-renderer", post_renderer])
                for arg in post_renderer_args:
                    args.extend(["--post-renderer-args", arg])

            try:
                result = self._run(args)
            except HelmCommandError as e:
                partial = split_rendered_output(e.stdout) if e.stdout and e.stdout.strip() else None
                raise RenderError(
                    f"failed to render chart '{chart.name}': {e.message}",
                    partial=partial,
                ) from e
            except HelmError as e:
                raise RenderError(f"failed to render chart '{chart.name}': {e.message}") from e

        rendered = split_rendered_output(result.stdout)
        self._log.debug(
            "chart_rendered",
            chart=chart.name,
            release=release_name,
            hooks=len(rendered.hooks),
        )
        return rendered
