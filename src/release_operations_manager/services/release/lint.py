"""Chart lint rules and the lint gate."""

from __future__ import annotations

import re
from typing import Any

import structlog
import yaml

from release_operations_manager.integrations.kubernetes.exceptions import KubernetesValidationError
from release_operations_manager.integrations.kubernetes.manifest_applier import load_manifest_documents
from release_operations_manager.integrations.kubernetes.models.chart import (
    APPLICATION_CHART_TYPE,
    LIBRARY_CHART_TYPE,
    Chart,
)
from release_operations_manager.integrations.kubernetes.models.crd import parse_crd_documents
from release_operations_manager.services.release.exceptions import LintError, RenderError
from release_operations_manager.services.release.interfaces import (
    LintMessage,
    LintSeverity,
    TemplateRenderer,
)
from release_operations_manager.services.release.semver import parse_version

logger = structlog.get_logger()

SUPPORTED_CHART_API_VERSIONS = ("v1", "v2")
REQUIRED_MANIFEST_FIELDS = ("apiVersion", "kind", "metadata")
LINT_RELEASE_NAME = "lint-release"

_DNS1123_SUBDOMAIN_RE = re.compile(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?(\.[a-z0-9]([-a-z0-9]*[a-z0-9])?)*$")


class ChartLint:
    """Static checks on chart metadata, defaults, CRDs and rendered templates.

    Rendering checks run only when a renderer is supplied.
    """

    def __init__(self, renderer: TemplateRenderer | None = None) -> None:
        self._renderer = renderer
        self._log = logger.bind(component="lint")

    def lint(
        self,
        chart: Chart,
        values: dict[str, Any],
        *,
        namespace: str,
    ) -> list[LintMessage]:
        messages: list[LintMessage] = []
        messages.extend(self._lint_metadata(chart))
        messages.extend(self._lint_values(chart))
        messages.extend(self._lint_crds(chart))
        messages.extend(self._lint_dependencies(chart))
        if self._renderer is not None and chart.metadata.type != LIBRARY_CHART_TYPE:
            messages.extend(self._lint_templates(self._renderer, chart, values, namespace))

        self._log.debug(
            "chart_linted",
            chart=chart.name,
            errors=sum(1 for m in messages if m.severity is LintSeverity.ERROR),
            warnings=sum(1 for m in messages if m.severity is LintSeverity.WARNING),
        )
        return messages

    def _lint_metadata(self, chart: Chart) -> list[LintMessage]:
        path = "Chart.yaml"
        metadata = chart.metadata
        messages: list[LintMessage] = []

        def add(severity: LintSeverity, text: str) -> None:
            messages.append(LintMessage(severity, path, text))

        if metadata.api_version not in SUPPORTED_CHART_API_VERSIONS:
            add(LintSeverity.ERROR, f"apiVersion '{metadata.api_version}' is not valid, use v2")
        if not metadata.version:
            add(LintSeverity.ERROR, "version is required")
        elif parse_version(metadata.version) is None:
            add(LintSeverity.ERROR, f"version '{metadata.version}' is not a valid SemVer")
        if metadata.type not in ("", APPLICATION_CHART_TYPE, LIBRARY_CHART_TYPE):
            add(LintSeverity.ERROR, f"chart type '{metadata.type}' is not valid")
        if chart.path is not None and chart.path.is_dir() and chart.path.name != metadata.name:
            add(LintSeverity.ERROR, f"directory name ({chart.path.name}) and chart name ({metadata.name}) must match")
        if metadata.deprecated:
            add(LintSeverity.WARNING, "chart is deprecated")
        if not metadata.description:
            add(LintSeverity.INFO, "description is recommended")
        return messages

    def _lint_values(self, chart: Chart) -> list[LintMessage]:
        if not chart.values_text.strip():
            return []
        try:
            loaded = yaml.safe_load(chart.values_text)
        except yaml.YAMLError as e:
            return [LintMessage(LintSeverity.ERROR, "values.yaml", f"unable to parse YAML: {e}")]
        if loaded is not None and not isinstance(loaded, dict):
            return [LintMessage(LintSeverity.ERROR, "values.yaml", "values must be a mapping")]
        return []

    def _lint_crds(self, chart: Chart) -> list[LintMessage]:
        messages: list[LintMessage] = []
        for crd_file in chart.crd_files:
            try:
                documents = parse_crd_documents(crd_file.data.decode("utf-8"), source=crd_file.name)
            except ValueError as e:
                messages.append(LintMessage(LintSeverity.ERROR, crd_file.name, str(e)))
                continue
            for document in documents:
                if document.body.get("kind") != "CustomResourceDefinition":
                    messages.append(
                        LintMessage(
                            LintSeverity.ERROR,
                            crd_file.name,
                            f"object kind '{document.body.get('kind')}' is not a CustomResourceDefinition",
                        )
                    )
        return messages

    def _lint_dependencies(self, chart: Chart) -> list[LintMessage]:
        bundled = {sub.name for sub in chart.dependencies}
        return [
            LintMessage(
                LintSeverity.WARNING,
                "Chart.yaml",
                f"chart directory is missing dependency '{dependency.name}'",
            )
            for dependency in chart.metadata.dependencies
            if dependency.enabled and dependency.name not in bundled and dependency.alias not in bundled
        ]

    def _lint_templates(
        self,
        renderer: TemplateRenderer,
        chart: Chart,
        values: dict[str, Any],
        namespace: str,
    ) -> list[LintMessage]:
        if not chart.templates:
            return [LintMessage(LintSeverity.WARNING, "templates/", "chart has no templates")]

        try:
            rendered = renderer.render(
                chart, values, release_name=LINT_RELEASE_NAME, namespace=namespace
            )
        except RenderError as e:
            return [LintMessage(LintSeverity.ERROR, "templates/", e.message)]

        try:
            documents = load_manifest_documents(rendered.as_text())
        except KubernetesValidationError as e:
            return [LintMessage(LintSeverity.ERROR, "templates/", e.message)]

        messages: list[LintMessage] = []
        for document in documents:
            metadata = document.get("metadata")
            identifier = f"{document.get('kind', 'Unknown')}"
            for field in REQUIRED_MANIFEST_FIELDS:
                if field not in document:
                    messages.append(
                        LintMessage(LintSeverity.ERROR, "templates/", f"{identifier}: missing required field {field}")
                    )
            if isinstance(metadata, dict):
                name = metadata.get("name")
                if not name:
                    messages.append(
                        LintMessage(LintSeverity.ERROR, "templates/", f"{identifier}: metadata.name is required")
                    )
                elif not _DNS1123_SUBDOMAIN_RE.match(str(name)):
                    messages.append(
                        LintMessage(
                            LintSeverity.ERROR,
                            "templates/",
                            f"{identifier}/{name}: metadata.name is not a valid DNS-1123 subdomain",
                        )
                    )
        return messages


def enforce_lint(chart_name: str, messages: list[LintMessage], strict: bool = False) -> None:
    """Abort with every blocking finding at once.

    Errors always block; warnings block only in strict mode.

    Raises:
        LintError: If any blocking finding exists.
    """
    blocking = {LintSeverity.ERROR} | ({LintSeverity.WARNING} if strict else set())
    failures = [str(m) for m in messages if m.severity in blocking]
    if failures:
        raise LintError(chart_name, failures)
