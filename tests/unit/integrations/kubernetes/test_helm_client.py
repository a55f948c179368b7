"""Unit tests for HelmTemplateRenderer."""

from __future__ import annotations

import subprocess
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
import yaml

from release_operations_manager.integrations.kubernetes.helm_client import (
    HelmBinaryNotFoundError,
    HelmCommandError,
    HelmError,
    HelmTemplateRenderer,
    split_rendered_output,
)
from release_operations_manager.integrations.kubernetes.models.chart import Chart, ChartMetadata
from release_operations_manager.services.release.exceptions import RenderError

RENDERED = """---
# Source: web/templates/configmap.yaml
apiVersion: v1
kind: ConfigMap
metadata:
  name: web-config
---
# Source: web/templates/tests/test-connection.yaml
apiVersion: v1
kind: Pod
metadata:
  name: web-test
  annotations:
    helm.sh/hook: test, post-install
spec:
  containers: []
"""


@pytest.fixture
def renderer() -> HelmTemplateRenderer:
    """Create a HelmTemplateRenderer with mocked binary detection."""
    with patch("shutil.which", return_value="/usr/local/bin/helm"):
        return HelmTemplateRenderer()


@pytest.fixture
def chart(tmp_path: Path) -> Chart:
    return Chart(metadata=ChartMetadata(name="web", version="1.0.0"), path=tmp_path)


# ===========================================================================
# TestInit
# ===========================================================================


@pytest.mark.unit
@pytest.mark.kubernetes
class TestInit:
    """Tests for HelmTemplateRenderer initialization."""

    def test_finds_binary_in_path(self) -> None:
        """Should find helm binary in PATH."""
        with patch("shutil.which", return_value="/usr/local/bin/helm"):
            assert HelmTemplateRenderer().binary_path == "/usr/local/bin/helm"

    def test_raises_when_binary_not_found(self) -> None:
        """Should raise HelmBinaryNotFoundError if not in PATH."""
        with patch("shutil.which", return_value=None), pytest.raises(HelmBinaryNotFoundError):
            HelmTemplateRenderer()

    def test_uses_explicit_binary_path(self, tmp_path: Path) -> None:
        """Should use explicit binary path when provided."""
        fake_binary = tmp_path / "helm"
        fake_binary.touch()

        assert HelmTemplateRenderer(binary_path=str(fake_binary)).binary_path == str(fake_binary.resolve())

    def test_raises_when_explicit_path_not_found(self) -> None:
        """Should raise when explicit binary path does not exist."""
        with pytest.raises(HelmBinaryNotFoundError):
            HelmTemplateRenderer(binary_path="/nonexistent/helm")


# ===========================================================================
# TestGetVersion
# ===========================================================================


@pytest.mark.unit
@pytest.mark.kubernetes
class TestGetVersion:
    """Tests for HelmTemplateRenderer.get_version."""

    @patch("subprocess.run")
    def test_strips_build_metadata(self, mock_run: MagicMock, renderer: HelmTemplateRenderer) -> None:
        mock_run.return_value = MagicMock(stdout="v3.17.0+g301108e\n", returncode=0)

        assert renderer.get_version() == "v3.17.0"

    @patch("subprocess.run")
    def test_raises_on_failure(self, mock_run: MagicMock, renderer: HelmTemplateRenderer) -> None:
        mock_run.side_effect = subprocess.CalledProcessError(
            returncode=1, cmd=["helm", "version"], stderr="error"
        )

        with pytest.raises(HelmCommandError, match="error"):
            renderer.get_version()

    @patch("subprocess.run")
    def test_raises_on_timeout(self, mock_run: MagicMock, renderer: HelmTemplateRenderer) -> None:
        mock_run.side_effect = subprocess.TimeoutExpired(cmd=["helm"], timeout=10)

        with pytest.raises(HelmError, match="timed out"):
            renderer.get_version()


# ===========================================================================
# TestRender
# ===========================================================================


@pytest.mark.unit
@pytest.mark.kubernetes
class TestRender:
    """Tests for HelmTemplateRenderer.render."""

    @patch("subprocess.run")
    def test_template_command(
        self, mock_run: MagicMock, renderer: HelmTemplateRenderer, chart: Chart, tmp_path: Path
    ) -> None:
        """Should run helm template with a values file holding the composed values."""
        captured: dict[str, object] = {}

        def run(cmd: list[str], **kwargs: object) -> MagicMock:
            values_file = Path(cmd[cmd.index("--values") + 1])
            captured["values"] = yaml.safe_load(values_file.read_text())
            return MagicMock(stdout=RENDERED, returncode=0)

        mock_run.side_effect = run

        renderer.render(chart, {"replicas": 2}, release_name="web", namespace="apps")

        cmd = mock_run.call_args.args[0]
        assert cmd[:4] == ["/usr/local/bin/helm", "template", "web", str(tmp_path)]
        assert cmd[cmd.index("--namespace") + 1] == "apps"
        assert "--debug" in cmd
        assert "--include-crds" not in cmd
        assert captured["values"] == {"replicas": 2}

    @patch("subprocess.run")
    def test_optional_flags(self, mock_run: MagicMock, renderer: HelmTemplateRenderer, chart: Chart) -> None:
        mock_run.return_value = MagicMock(stdout="", returncode=0)

        renderer.render(
            chart,
            {},
            release_name="web",
            namespace="default",
            include_crds=True,
            is_upgrade=True,
            disable_hooks=True,
            kube_version="1.29.0",
            api_versions=("monitoring.coreos.com/v1", "batch/v1"),
        )

        cmd = mock_run.call_args.args[0]
        for flag in ("--include-crds", "--is-upgrade", "--no-hooks"):
            assert flag in cmd
        assert cmd[cmd.index("--kube-version") + 1] == "1.29.0"
        assert cmd.count("--api-versions") == 2
        assert "--post-renderer" not in cmd

    @patch("subprocess.run")
    def test_post_renderer(self, mock_run: MagicMock, renderer: HelmTemplateRenderer, chart: Chart) -> None:
        mock_run.return_value = MagicMock(stdout="", returncode=0)

        renderer.render(
            chart,
            {},
            release_name="web",
            namespace="default",
            post_renderer="./kustomize-wrapper.sh",
            post_renderer_args=("--overlay", "prod"),
        )

        cmd = mock_run.call_args.args[0]
        assert cmd[cmd.index("--post-renderer") + 1] == "./kustomize-wrapper.sh"
        assert [cmd[i + 1] for i, part in enumerate(cmd) if part == "--post-renderer-args"] == ["--overlay", "prod"]

    @patch("subprocess.run")
    def test_post_renderer_args_need_renderer(
        self, mock_run: MagicMock, renderer: HelmTemplateRenderer, chart: Chart
    ) -> None:
        mock_run.return_value = MagicMock(stdout="", returncode=0)

        renderer.render(chart, {}, release_name="web", namespace="default", post_renderer_args=("--overlay",))

        assert "--post-renderer-args" not in mock_run.call_args.args[0]

    @patch("subprocess.run")
    def test_splits_hooks(self, mock_run: MagicMock, renderer: HelmTemplateRenderer, chart: Chart) -> None:
        mock_run.return_value = MagicMock(stdout=RENDERED, returncode=0)

        rendered = renderer.render(chart, {}, release_name="web", namespace="default")

        assert "kind: ConfigMap" in rendered.manifest
        assert [h.name for h in rendered.hooks] == ["web-test"]

    @patch("subprocess.run")
    def test_failure_keeps_partial_output(
        self, mock_run: MagicMock, renderer: HelmTemplateRenderer, chart: Chart
    ) -> None:
        mock_run.side_effect = subprocess.CalledProcessError(
            returncode=1,
            cmd=["helm", "template"],
            output=RENDERED,
            stderr="Error: template: web/templates/deployment.yaml:4: nil pointer\n",
        )

        with pytest.raises(RenderError, match="nil pointer") as exc_info:
            renderer.render(chart, {}, release_name="web", namespace="default")

        assert exc_info.value.partial is not None
        assert "web-config" in exc_info.value.partial.manifest

    @patch("subprocess.run")
    def test_timeout_is_render_error(
        self, mock_run: MagicMock, renderer: HelmTemplateRenderer, chart: Chart
    ) -> None:
        mock_run.side_effect = subprocess.TimeoutExpired(cmd=["helm"], timeout=300)

        with pytest.raises(RenderError, match="timed out") as exc_info:
            renderer.render(chart, {}, release_name="web", namespace="default")

        assert exc_info.value.partial is None

    def test_chart_without_path(self, renderer: HelmTemplateRenderer) -> None:
        chart = Chart(metadata=ChartMetadata(name="web", version="1.0.0"))

        with pytest.raises(RenderError, match="no local path"):
            renderer.render(chart, {}, release_name="web", namespace="default")


# ===========================================================================
# TestSplitRenderedOutput
# ===========================================================================


@pytest.mark.unit
@pytest.mark.kubernetes
class TestSplitRenderedOutput:
    """Tests for split_rendered_output."""

    def test_manifest_keeps_source_headers(self) -> None:
        rendered = split_rendered_output(RENDERED)

        assert rendered.manifest.startswith("---\n# Source: web/templates/configmap.yaml\napiVersion: v1")
        assert "web-test" not in rendered.manifest

    def test_hook_fields(self) -> None:
        hook = split_rendered_output(RENDERED).hooks[0]

        assert hook.path == "web/templates/tests/test-connection.yaml"
        assert hook.kind == "Pod"
        assert hook.events == ["test", "post-install"]
        assert not hook.manifest.startswith("# Source:")

    def test_empty_output(self) -> None:
        rendered = split_rendered_output("")

        assert rendered.manifest == ""
        assert rendered.hooks == []

    def test_unparseable_chunk_stays_in_manifest(self) -> None:
        rendered = split_rendered_output("---\nkey: [unclosed\n")

        assert "unclosed" in rendered.manifest
