"""Asset selection, URL signing and local download of STAC item assets."""

from collections.abc import Callable
from pathlib import Path
from typing import Any

import planetary_computer
import requests
from dagster import AssetExecutionContext, OpExecutionContext

from watershed_explorer.config.constants import DEFAULT_DOWNLOAD_RETRIES, DEFAULT_HTTP_TIMEOUT
from watershed_explorer.exceptions import AssetResolutionError, DownloadError
from watershed_explorer.storage import download_file, filename_from_url

Signer = Callable[[str], str]


def _unsigned(href: str) -> str:
    return href


_SIGNERS: dict[str, Signer] = {
    "planetary-computer": planetary_computer.sign,
    "none": _unsigned,
}


def register_signer(provider: str, signer: Signer) -> None:
    """Register a signing strategy for a catalog provider.

    :param provider: Provider identity (e.g. "planetary-computer")
    :param signer: Function mapping an asset URL to a dereferenceable URL
    """
    _SIGNERS[provider] = signer


def get_signer(provider: str) -> Signer:
    """Look up the signing strategy for a provider.

    :param provider: Provider identity
    :returns: Signer function
    :raises AssetResolutionError: If no signer is registered for the provider
    """
    try:
        return _SIGNERS[provider]
    except KeyError as e:
        raise AssetResolutionError(
            "assets", f"No signer registered for provider {provider!r}", {"known": sorted(_SIGNERS)}
        ) from e


def select_asset_key(item: Any, candidates: list[str]) -> str:
    """Pick the first preferred asset name present on the item.

    :param item: STAC item
    :param candidates: Asset names in order of preference
    :returns: Asset key
    :raises AssetResolutionError: If none of the candidates exists
    """
    for asset_key in candidates:
        if asset_key in item.assets:
            return asset_key
    raise AssetResolutionError(
        "assets",
        f"Item has none of the requested assets {candidates}",
        {"item": item.id, "available": list(item.assets.keys())},
    )


def sign_href(href: str, signer: Signer, item_id: str | None = None) -> str:
    """Sign one asset URL.

    Signing failures are not retried.

    :param href: Asset URL
    :param signer: Signer function
    :param item_id: Item ID for error reporting
    :returns: Signed URL
    :raises AssetResolutionError: If the signer fails
    """
    try:
        return signer(href)
    except (requests.RequestException, ValueError) as e:
        raise AssetResolutionError("assets", f"Signing failed: {e}", {"item": item_id, "href": href}) from e


def sign_item_assets(
    context: OpExecutionContext | AssetExecutionContext,
    items: list[Any],
    candidates: list[str],
    signer: Signer,
) -> list[str]:
    """Resolve one signed URL per item.

    :param context: Dagster context
    :param items: STAC items
    :param candidates: Asset names in order of preference
    :param signer: Signer function
    :returns: Signed URLs in item order
    """
    hrefs = []
    for item in items:
        asset_key = select_asset_key(item, candidates)
        hrefs.append(sign_href(item.assets[asset_key].href, signer, item_id=item.id))
    context.log.info(f"Signed {len(hrefs)} asset URL(s) ({', '.join(candidates)})")
    return hrefs


def download_item_assets(
    context: OpExecutionContext | AssetExecutionContext,
    items: list[Any],
    candidates: list[str],
    signer: Signer,
    dest_dir: Path,
    overwrite: bool = False,
    timeout: float = DEFAULT_HTTP_TIMEOUT,
    retries: int = DEFAULT_DOWNLOAD_RETRIES,
) -> list[Path]:
    """Download one asset per item to local storage.

    Files are stored as ``dest_dir/<collection>/<item id>/<file name>``.

    :param context: Dagster context
    :param items: STAC items
    :param candidates: Asset names in order of preference
    :param signer: Signer function
    :param dest_dir: Base download directory
    :param overwrite: Re-download existing files
    :param timeout: HTTP timeout in seconds
    :param retries: Number of download attempts
    :returns: Local file paths in item order
    """
    paths = []
    for item in items:
        asset_key = select_asset_key(item, candidates)
        href = item.assets[asset_key].href
        dest_path = Path(dest_dir) / (item.collection_id or "items") / item.id / filename_from_url(href, asset_key)

        if dest_path.exists() and not overwrite:
            context.log.info(f"Asset already downloaded: {dest_path}")
            paths.append(dest_path)
            continue

        signed = sign_href(href, signer, item_id=item.id)
        try:
            paths.append(download_file(context, signed, dest_path, overwrite=overwrite, timeout=timeout, retries=retries))
        except DownloadError as e:
            raise AssetResolutionError("assets", e.message, {"item": item.id, "asset": asset_key}) from e
    return paths
