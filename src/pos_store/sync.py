"""Whole-dataset synchronisation with the remote web-app endpoint.

The remote copy is one opaque snapshot. A push uploads every collection, a
pull replaces every collection the remote copy holds. There is no per-record
merge; the rules below only decide which side wins.

* Local changes are never silently dropped: with pending changes a pull
  turns into a push unless the remote copy was written clearly after the
  last local mutation (more than ``skew_guard`` later).
* ``force`` always takes the remote copy.
* A push clears the dirty flag only if no mutation happened while it was in
  flight.

Network calls run without holding the context lock, so the register stays
usable while a slow endpoint is contacted.
"""

from __future__ import annotations

import base64
import binascii
import json
from datetime import datetime
from typing import Any, Mapping, Optional
from urllib.parse import quote

import requests

from . import core_logic, log, session
from .constants import DATASET_KEYS, Severity, SyncResult
from .core_logic import RuntimeContext
from .models import RemoteSnapshot
from .time_utils import epoch_millis, parse_iso, to_iso


class SyncError(Exception):
    """Raised when the remote endpoint cannot be reached or reports an error."""


# ---------------------------------------------------------------------------
# Wire format
# ---------------------------------------------------------------------------


def build_url(endpoint: str, **params: str) -> str:
    """Append query parameters to ``endpoint``, which may already carry some."""
    base = endpoint.strip()
    separator = "&" if "?" in base else "?"
    query = "&".join(f"{key}={quote(str(value), safe='')}" for key, value in params.items())
    return f"{base}{separator}{query}"


def encode_payload(data: Mapping[str, Any], moment: datetime) -> str:
    """Base64 of the UTF-8 JSON envelope ``{"timestamp", "data"}``."""
    envelope = json.dumps({"timestamp": to_iso(moment), "data": data}, ensure_ascii=False, separators=(",", ":"))
    return base64.b64encode(envelope.encode("utf-8")).decode("ascii")


def decode_payload(payload: str) -> Any:
    """Inverse of :func:`encode_payload`.

    Raises:
        ValueError: If ``payload`` is not base64 of UTF-8 JSON.
    """
    try:
        text = base64.b64decode(payload, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as exc:
        raise ValueError(f"Undecodable payload: {exc}") from exc
    return json.loads(text)


def _valid_endpoint(endpoint: Optional[str]) -> bool:
    return bool(endpoint) and endpoint.strip().startswith("http")


def push_snapshot(endpoint: str, secret: str, data: Mapping[str, Any], *, moment: datetime, timeout: float) -> None:
    """Upload ``data`` to the endpoint.

    Args:
        endpoint (str): Web-app URL.
        secret (str): Shared secret, sent in the body.
        data (Mapping): Serialised dataset.
        moment (datetime): Timestamp written into the envelope.
        timeout (float): Seconds before the request is abandoned.

    Raises:
        SyncError: On transport failure, a non-2xx status or an error reply.
    """
    body = json.dumps({"action": "push", "secret": secret or "", "payload": encode_payload(data, moment)})
    try:
        response = requests.post(
            build_url(endpoint, action="push"),
            data=body.encode("utf-8"),
            headers={"Content-Type": "text/plain"},
            timeout=timeout,
            allow_redirects=True,
        )
    except requests.exceptions.RequestException as exc:
        raise SyncError(f"Push request failed: {exc}") from exc
    if not response.ok:
        raise SyncError(f"Push rejected with HTTP {response.status_code}")
    try:
        reply = response.json()
    except ValueError:
        # Some deployments answer with an HTML page after the redirect.
        return
    if isinstance(reply, Mapping) and reply.get("status") == "error":
        raise SyncError(str(reply.get("message") or "Remote reported an error"))


def fetch_snapshot(endpoint: str, secret: str, *, moment: datetime, timeout: float) -> RemoteSnapshot:
    """Download the remote copy.

    The reply carries the dataset as a base64 ``payload`` string, as a raw
    object, or (for old deployments) as the reply itself. A ``null``
    payload means the remote holds nothing yet.

    Raises:
        SyncError: On transport failure, a non-2xx status, a body that is
            not JSON, or an ``{"status": "error"}`` reply.
    """
    url = build_url(endpoint, action="pull", secret=secret or "", t=str(epoch_millis(moment)))
    try:
        response = requests.get(url, headers={"Content-Type": "text/plain"}, timeout=timeout, allow_redirects=True)
    except requests.exceptions.RequestException as exc:
        raise SyncError(f"Pull request failed: {exc}") from exc
    if not response.ok:
        raise SyncError(f"Pull rejected with HTTP {response.status_code}")
    try:
        reply = response.json()
    except ValueError as exc:
        raise SyncError(f"Pull reply is not JSON: {exc}") from exc
    if not isinstance(reply, Mapping):
        return RemoteSnapshot(None, None)
    if reply.get("status") == "error":
        raise SyncError(str(reply.get("message") or "Remote reported an error"))

    payload = reply.get("payload")
    if isinstance(payload, str):
        try:
            envelope = decode_payload(payload)
        except ValueError as exc:
            log.warning("Remote payload undecodable, using the raw reply (%s)", exc)
            return RemoteSnapshot(parse_iso(reply.get("timestamp")), reply)
        return _unwrap(envelope)
    if isinstance(payload, Mapping):
        return _unwrap(payload)
    if "payload" in reply:
        return RemoteSnapshot(None, None)
    return RemoteSnapshot(parse_iso(reply.get("timestamp")), reply)


def _unwrap(envelope: Any) -> RemoteSnapshot:
    if not isinstance(envelope, Mapping):
        return RemoteSnapshot(None, None)
    data = envelope.get("data") or envelope
    return RemoteSnapshot(parse_iso(envelope.get("timestamp")), data if isinstance(data, Mapping) else None)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


def sync_enabled(context: RuntimeContext) -> bool:
    settings = context.state.settings
    return settings.enable_cloud_sync and _valid_endpoint(settings.google_web_app_url)


def _claim(context: RuntimeContext) -> bool:
    with context.lock:
        if context.sync.is_syncing:
            return False
        context.sync.is_syncing = True
        return True


def _release(context: RuntimeContext) -> None:
    with context.lock:
        context.sync.is_syncing = False


def _timeout(context: RuntimeContext) -> float:
    return context.config.sync_timeout.total_seconds()


def push_to_cloud(context: RuntimeContext, *, manual: bool = False, force: bool = False) -> SyncResult:
    """Upload the whole dataset.

    Args:
        context (RuntimeContext): Active runtime context.
        manual (bool): User-initiated; lifts the empty-dataset guard and
            confirms success with a toast.
        force (bool): Lift the empty-dataset guard.

    Returns:
        SyncResult: ``DISABLED``, ``BUSY``, ``SKIPPED``, ``PUSHED`` or
            ``FAILED``.
    """
    if not sync_enabled(context):
        return SyncResult.DISABLED
    if not _claim(context):
        return SyncResult.BUSY
    try:
        return _push(context, manual=manual, force=force)
    finally:
        _release(context)


def _push(context: RuntimeContext, *, manual: bool, force: bool) -> SyncResult:
    with context.lock:
        state = context.state
        is_empty = not state.products and not state.customers
        if is_empty and not (force or manual or state.activity_logs):
            log.warning("Push blocked: local dataset is empty")
            return SyncResult.SKIPPED
        data = core_logic.snapshot(context)
        marker = context.sync.last_local_update
        endpoint = state.settings.google_web_app_url
        secret = state.settings.cloud_secret

    try:
        push_snapshot(endpoint, secret, data, moment=context.clock(), timeout=_timeout(context))
    except SyncError as exc:
        log.warning("Push failed: %s", exc)
        context.notifier.notify("Sync error", "Changes could not be saved to the cloud.", Severity.ERROR)
        return SyncResult.FAILED

    core_logic.mark_synced(context, marker)
    log.info("Pushed dataset to the remote copy")
    if manual:
        context.notifier.notify("Synchronised", "Changes saved to the cloud.", Severity.SUCCESS)
    return SyncResult.PUSHED


def pull_from_cloud(
    context: RuntimeContext,
    *,
    force: bool = False,
    silent: bool = False,
    endpoint: Optional[str] = None,
    secret: Optional[str] = None,
) -> SyncResult:
    """Fetch the remote copy and, when it wins, replace the local dataset.

    Args:
        context (RuntimeContext): Active runtime context.
        force (bool): Take the remote copy even over pending local changes.
        silent (bool): Background call; no toasts.
        endpoint (str | None): URL to use instead of the configured one.
        secret (str | None): Secret to use instead of the configured one.

    Returns:
        SyncResult: ``PULLED``, ``EMPTY``, ``FAILED``, ``BUSY``,
            ``DISABLED``, or the result of the push that replaced the pull.
    """
    settings = context.state.settings
    url = endpoint or settings.google_web_app_url
    key = secret if secret is not None else settings.cloud_secret
    if not _valid_endpoint(url):
        return SyncResult.DISABLED
    if not _claim(context):
        return SyncResult.BUSY
    try:
        return _pull(context, url, key, force=force, silent=silent)
    finally:
        _release(context)


def _pull(context: RuntimeContext, url: str, secret: str, *, force: bool, silent: bool) -> SyncResult:
    with context.lock:
        pending = context.sync.has_pending_changes and not force
        marker = context.sync.last_local_update

    try:
        remote = fetch_snapshot(url, secret, moment=context.clock(), timeout=_timeout(context))
    except SyncError as exc:
        log.warning("Pull failed: %s", exc)
        if not silent:
            context.notifier.notify("Sync error", str(exc), Severity.ERROR)
        return SyncResult.FAILED

    data = remote.data
    if not data or not any(item.value in data for item in DATASET_KEYS):
        log.info("Remote copy is empty")
        return SyncResult.EMPTY

    if pending:
        newer = (
            remote.timestamp is not None
            and marker is not None
            and remote.timestamp > marker + context.config.skew_guard
        )
        if not newer:
            log.info("Local changes pending; pushing instead of pulling")
            return _push(context, manual=not silent, force=False)
        log.warning(
            "Remote copy (%s) is newer than pending local changes (%s); taking the remote copy",
            to_iso(remote.timestamp),
            to_iso(marker),
        )

    with context.lock:
        changed = not force and context.sync.last_local_update != marker
        if not changed:
            core_logic.import_data(context, data, mark_dirty=False)
            core_logic.clear_pending_changes(context)
            session.refresh_session(context)
    if changed:
        log.info("Local changes arrived during pull; pushing them instead")
        return _push(context, manual=not silent, force=False)

    log.info("Pulled dataset from the remote copy")
    if not silent:
        context.notifier.notify("Synchronised", "Data updated from the cloud.", Severity.SUCCESS)
    return SyncResult.PULLED


def sync_tick(context: RuntimeContext) -> SyncResult:
    """Periodic step: push pending changes, otherwise refresh silently."""
    if not sync_enabled(context):
        return SyncResult.DISABLED
    if context.sync.has_pending_changes:
        return push_to_cloud(context)
    return pull_from_cloud(context, silent=True)


def hard_reset(context: RuntimeContext) -> SyncResult:
    """Forget unsynced local state and take the remote copy as it is."""
    url = context.state.settings.google_web_app_url
    if not _valid_endpoint(url):
        return SyncResult.DISABLED
    if not _claim(context):
        return SyncResult.BUSY
    try:
        core_logic.clear_pending_changes(context, forget_local_update=True)
        log.warning("Hard reset: discarding pending local changes")
        return _pull(context, url, context.state.settings.cloud_secret, force=True, silent=False)
    finally:
        _release(context)
