"""STAC operations for listing collections and searching items."""

from collections.abc import Iterable, Iterator
from datetime import date, datetime, timezone
from typing import Any

from dagster import AssetExecutionContext, OpExecutionContext
from pystac_client.exceptions import APIError

from watershed_explorer.config.constants import ITEM_SELECTION_ALL, ITEM_SELECTION_FIRST
from watershed_explorer.exceptions import CatalogQueryError, NoDataAvailableError
from watershed_explorer.models.models import CollectionSummary

_OPEN_ENDS = ("", "..")


def list_collections(client: Any) -> list[CollectionSummary]:
    """List collections exposed by the STAC API.

    :param client: STAC client
    :returns: Collection summaries in server order
    """
    try:
        return [
            CollectionSummary(id=collection.id, title=collection.title, description=collection.description)
            for collection in client.get_collections()
        ]
    except APIError as e:
        raise CatalogQueryError("catalog", f"Listing collections failed: {e}") from e


def _parse_instant(value: str, end_of_day: bool = False) -> datetime:
    text = value.strip()
    if len(text) == 10:
        day = date.fromisoformat(text)
        if end_of_day:
            return datetime(day.year, day.month, day.day, 23, 59, 59, 999999, tzinfo=timezone.utc)
        return datetime(day.year, day.month, day.day, tzinfo=timezone.utc)
    parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def parse_datetime_range(value: str) -> tuple[datetime | None, datetime | None]:
    """Parse an ISO 8601 date or "start/end" interval.

    Open ends are written as ".." or left empty. Date-only ends are inclusive
    of the whole day.

    :param value: Datetime filter
    :returns: Tuple of (start or None, end or None)
    :raises CatalogQueryError: If the value cannot be parsed or start is after end
    """
    try:
        if "/" in value:
            start_str, end_str = value.split("/", 1)
            start = None if start_str.strip() in _OPEN_ENDS else _parse_instant(start_str)
            end = None if end_str.strip() in _OPEN_ENDS else _parse_instant(end_str, end_of_day=True)
        else:
            start = _parse_instant(value)
            end = _parse_instant(value, end_of_day=True)
    except ValueError as e:
        raise CatalogQueryError("catalog", f"Invalid datetime filter: {e}", {"datetime": value}) from e

    if start is not None and end is not None and start > end:
        raise CatalogQueryError("catalog", "Datetime range start is after its end", {"datetime": value})
    return start, end


def build_query(filters: dict[str, Any] | None) -> dict[str, Any] | None:
    """Translate attribute equality filters to the STAC query extension.

    :param filters: Mapping of property name to required value
    :returns: Query dictionary or None
    """
    if not filters:
        return None
    return {key: {"eq": value} for key, value in filters.items()}


def item_matches_filters(item: Any, filters: dict[str, Any] | None) -> bool:
    """Check exact, case-sensitive equality of item properties.

    :param item: STAC item
    :param filters: Mapping of property name to required value
    :returns: True if every filter matches
    """
    if not filters:
        return True
    properties = item.properties
    return all(key in properties and properties[key] == value for key, value in filters.items())


def _item_interval(item: Any) -> tuple[datetime | None, datetime | None]:
    properties = getattr(item, "properties", None) or {}
    start_str, end_str = properties.get("start_datetime"), properties.get("end_datetime")
    if start_str or end_str:
        start = _parse_instant(start_str) if start_str else None
        end = _parse_instant(end_str) if end_str else None
        return start, end
    instant = getattr(item, "datetime", None)
    if instant is None and properties.get("datetime"):
        instant = properties["datetime"]
    if isinstance(instant, str):
        instant = _parse_instant(instant)
    if isinstance(instant, datetime) and instant.tzinfo is None:
        instant = instant.replace(tzinfo=timezone.utc)
    return instant, instant


def item_in_datetime_range(item: Any, start: datetime | None, end: datetime | None) -> bool:
    """Check that an item's time span overlaps a datetime range.

    The span is ``start_datetime``/``end_datetime`` when present, otherwise the
    item datetime. Items carrying no readable time information are kept.

    :param item: STAC item
    :param start: Range start or None for open
    :param end: Range end or None for open
    :returns: True if the spans overlap
    """
    try:
        item_start, item_end = _item_interval(item)
    except ValueError:
        return True
    if item_start is None and item_end is None:
        return True
    if end is not None and item_start is not None and item_start > end:
        return False
    if start is not None and item_end is not None and item_end < start:
        return False
    return True


def search_items(
    context: OpExecutionContext | AssetExecutionContext,
    stac_client: Any,
    collection: str,
    intersects: dict[str, Any] | None = None,
    datetime: str | None = None,
    filters: dict[str, Any] | None = None,
    max_items: int | None = None,
) -> Iterator[Any]:
    """Search a collection lazily.

    Items are yielded in server order, page by page. Calling again re-executes
    the search. Items outside the datetime range or not matching every
    attribute filter are skipped.

    :param context: Dagster context
    :param stac_client: STAC client
    :param collection: Collection ID
    :param intersects: GeoJSON geometry the items must intersect
    :param datetime: ISO 8601 date or "start/end" interval
    :param filters: Attribute equality filters
    :param max_items: Maximum number of items to return
    :yields: STAC items
    """
    params = {"collection": collection, "datetime": datetime, "filters": filters}
    start, end = parse_datetime_range(datetime) if datetime else (None, None)

    search_kwargs: dict[str, Any] = {"collections": [collection]}
    if intersects is not None:
        search_kwargs["intersects"] = intersects
    if datetime:
        search_kwargs["datetime"] = datetime
    query = build_query(filters)
    if query:
        search_kwargs["query"] = query
    if max_items is not None:
        search_kwargs["max_items"] = max_items

    context.log.info(f"Searching {collection} (datetime={datetime}, filters={filters})")
    try:
        for item in stac_client.search(**search_kwargs).items():
            if not item_matches_filters(item, filters):
                context.log.warning(f"Skipping item {item.id}: properties do not match {filters}")
                continue
            if not item_in_datetime_range(item, start, end):
                context.log.warning(f"Skipping item {item.id}: outside datetime range {datetime}")
                continue
            yield item
    except APIError as e:
        raise CatalogQueryError("catalog", f"STAC search failed: {e}", params) from e


def require_items(items: Iterable[Any], stage: str, params: dict[str, Any] | None = None) -> list[Any]:
    """Materialize items, failing when there are none.

    :param items: Item iterable
    :param stage: Stage name for the error
    :param params: Query parameters for the error
    :returns: List of items
    :raises NoDataAvailableError: If the iterable is empty
    """
    materialized = list(items)
    if not materialized:
        raise NoDataAvailableError(stage, "No data available for query", params)
    return materialized


def select_items(items: list[Any], mode: str = ITEM_SELECTION_FIRST) -> list[Any]:
    """Choose which returned items feed the raster stage.

    :param items: Items in server order
    :param mode: "first" for a representative item, "all" to aggregate every item
    :returns: Selected items
    """
    if mode == ITEM_SELECTION_FIRST:
        return items[:1]
    if mode == ITEM_SELECTION_ALL:
        return list(items)
    raise ValueError(f"Unknown item selection mode: {mode}")
