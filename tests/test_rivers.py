from types import SimpleNamespace
from typing import Any

import geopandas as gpd
import pytest
import requests
from osmnx._errors import InsufficientResponseError
from shapely.geometry import LineString, Point

from watershed_explorer.geospatial import rivers


@pytest.fixture
def fake_context() -> Any:
    noop = lambda *_, **__: None  # noqa: E731
    return SimpleNamespace(log=SimpleNamespace(info=noop, debug=noop, warning=noop, error=noop))


@pytest.fixture
def osm_features() -> gpd.GeoDataFrame:
    return gpd.GeoDataFrame(
        {
            "name": ["Oued Sebou", "Inaouene", "Sebou", None],
            "name:fr": [None, None, None, "Sebou"],
            "waterway": ["river", "river", "river", "river"],
        },
        geometry=[
            LineString([(0, 0), (1, 1)]),
            LineString([(1, 1), (2, 2)]),
            Point(0.5, 0.5),
            LineString([(2, 2), (3, 3)]),
        ],
        crs="EPSG:4326",
    )


@pytest.fixture(autouse=True)
def restore_osm_timeout(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(rivers.ox.settings, "requests_timeout", rivers.ox.settings.requests_timeout)


def test_filter_river_features_matches_any_name_column(osm_features: gpd.GeoDataFrame) -> None:
    """
    Test that name matching is case-insensitive, checks every name column and keeps only lines.
    """
    result = rivers.filter_river_features(osm_features, "sebou")
    assert len(result) == 2
    assert list(result.columns) == ["name", "waterway", "geometry"]
    assert set(result.geometry.geom_type) == {"LineString"}


def test_filter_river_features_without_name_keeps_all_lines(osm_features: gpd.GeoDataFrame) -> None:
    assert len(rivers.filter_river_features(osm_features, None)) == 3


def test_fetch_river_network_queries_bbox(
    monkeypatch: pytest.MonkeyPatch, fake_context: Any, osm_features: gpd.GeoDataFrame
) -> None:
    calls: dict[str, Any] = {}

    def fake_features_from_bbox(bbox: tuple[float, ...], tags: dict[str, Any]) -> gpd.GeoDataFrame:
        calls["bbox"] = bbox
        calls["tags"] = tags
        calls["timeout"] = rivers.ox.settings.requests_timeout
        return osm_features

    monkeypatch.setattr(rivers.ox, "features_from_bbox", fake_features_from_bbox)
    monkeypatch.setattr(rivers.ox.settings, "requests_timeout", 180)

    result = rivers.fetch_river_network(fake_context, (-6.5, 33.5, -4.0, 34.5), "Sebou", timeout=30)
    assert calls == {"bbox": (-6.5, 33.5, -4.0, 34.5), "tags": {"waterway": "river"}, "timeout": 30}
    assert rivers.ox.settings.requests_timeout == 180
    assert len(result) == 2


@pytest.mark.parametrize(
    "error", [InsufficientResponseError("No matching features"), requests.exceptions.ReadTimeout("timed out")]
)
def test_fetch_river_network_is_best_effort(
    monkeypatch: pytest.MonkeyPatch, fake_context: Any, error: Exception
) -> None:
    def failing_features_from_bbox(bbox: tuple[float, ...], tags: dict[str, Any]) -> gpd.GeoDataFrame:
        raise error

    monkeypatch.setattr(rivers.ox, "features_from_bbox", failing_features_from_bbox)
    monkeypatch.setattr(rivers.ox.settings, "requests_timeout", 180)

    result = rivers.fetch_river_network(fake_context, (0.0, 0.0, 1.0, 1.0), "Sebou", timeout=5)
    assert result.empty
    assert result.crs == "EPSG:4326"
    assert rivers.ox.settings.requests_timeout == 180
