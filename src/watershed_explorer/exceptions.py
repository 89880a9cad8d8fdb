"""Workflow errors carrying the failing stage and the parameters in effect."""

from typing import Any


class WorkflowError(Exception):
    """Base error for every pipeline stage.

    :param stage: Name of the stage that failed (e.g. "boundary", "catalog")
    :param message: Human-readable error message, including the underlying cause
    :param params: Parameters in effect when the stage failed
    """

    def __init__(self, stage: str, message: str, params: dict[str, Any] | None = None) -> None:
        self.stage = stage
        self.message = message
        self.params = dict(params or {})
        super().__init__(self._render())

    def _render(self) -> str:
        text = f"[{self.stage}] {self.message}"
        if self.params:
            rendered = ", ".join(f"{key}={value!r}" for key, value in self.params.items())
            text = f"{text} ({rendered})"
        return text


class DownloadError(WorkflowError):
    """A remote file could not be fetched."""


class NoContainingPolygonError(WorkflowError):
    """No basin polygon contains the requested point."""


class AmbiguousSelectionError(WorkflowError):
    """More than one basin polygon contains the requested point."""


class CatalogQueryError(WorkflowError):
    """A catalog query was invalid or the STAC API request failed."""


class NoDataAvailableError(WorkflowError):
    """A catalog search returned no items for the query."""


class AssetResolutionError(WorkflowError):
    """An asset could not be selected, signed or downloaded."""


class RasterAssemblyError(WorkflowError):
    """Grids or polygons are incompatible for mosaic, crop or mask."""
