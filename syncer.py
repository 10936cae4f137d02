from __future__ import annotations

import enum
import logging
import shutil
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Protocol

from config import Config, validate_config
from errors import IoError, ResolutionError, TransferFailed
from file_tracker import FileTracker, InclusionPolicy
from http_utils import RetryPolicy
from integrity import FileStatus, IntegrityChecker
from metadata_store import MetadataStore, TrackedFile, TrackedItem
from steam_api import ResolveResult, WorkshopCollection, WorkshopItem, WorkshopResolver
from steamcmd import SteamCmdAgent, TransferResult
from telemetry import start_span
from utils import directory_size, ensure_dir
from workshop_maps import write_workshop_maps


class MetadataResolver(Protocol):
    def resolve(self, workshop_id: str) -> ResolveResult: ...


class TransferAgent(Protocol):
    def transfer(self, app_id: str, item_id: str) -> TransferResult: ...

    def content_path(self, app_id: str, item_id: str) -> Path: ...


class ItemOutcome(enum.Enum):
    SKIPPED = "skipped"
    TRANSFERRED = "transferred"


@dataclass
class CollectionReport:
    id: str
    title: str
    transferred: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)
    ignored: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed


@dataclass
class SyncReport:
    id: str
    title: str
    is_collection: bool
    outcome: Optional[ItemOutcome] = None
    collection: Optional[CollectionReport] = None

    @property
    def ok(self) -> bool:
        return self.collection is None or self.collection.ok


@dataclass
class UpdateReport:
    transferred: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)
    ignored: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed


@dataclass
class RemovalReport:
    id: str
    removed_ids: List[str] = field(default_factory=list)
    deleted_files: List[str] = field(default_factory=list)
    skipped_modified: List[str] = field(default_factory=list)
    missing_files: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class StorageInfo:
    cache_root: Path
    store_path: Path
    item_count: int
    file_count: int
    used_bytes: int


class SyncEngine:
    """Keeps the cache root in line with the Steam workshop, one item at a time.

    Every public operation that mutates the store saves it and regenerates the
    workshop maps index before returning.
    """

    def __init__(
        self,
        store: MetadataStore,
        resolver: MetadataResolver,
        agent: TransferAgent,
        *,
        app_id: str,
        cache_root: Path,
        policy: Callable[[str], bool],
        maps_file: Path | None = None,
        tracker: FileTracker | None = None,
        checker: IntegrityChecker | None = None,
        transfer_attempts: int = 1,
        transfer_backoff: float = 0.0,
    ) -> None:
        self.store = store
        self.resolver = resolver
        self.agent = agent
        self.app_id = str(app_id)
        self.cache_root = Path(cache_root)
        self.policy = policy
        self.maps_file = maps_file
        self.tracker = tracker or FileTracker()
        self.checker = checker or IntegrityChecker(self.cache_root)
        self.transfer_attempts = max(1, int(transfer_attempts))
        self.transfer_backoff = max(0.0, float(transfer_backoff))
        ensure_dir(self.cache_root)

    def download(self, workshop_id: str, force: bool = False) -> SyncReport:
        with start_span("sync.download", {"steam.item_id": str(workshop_id), "sync.force": force}):
            resolved = self.resolver.resolve(str(workshop_id))
            if isinstance(resolved, WorkshopItem):
                outcome = self.sync_item(resolved, force=force)
                return SyncReport(
                    id=resolved.id,
                    title=resolved.title,
                    is_collection=False,
                    outcome=outcome,
                )
            if isinstance(resolved, WorkshopCollection):
                report = self.sync_collection(resolved, force=force)
                return SyncReport(
                    id=resolved.id,
                    title=resolved.title,
                    is_collection=True,
                    collection=report,
                )
            raise ResolutionError(str(workshop_id), f"unexpected result {type(resolved).__name__}")

    def sync_item(
        self,
        item: WorkshopItem,
        collection_id: str | None = None,
        force: bool = False,
    ) -> ItemOutcome:
        with start_span(
            "sync.item",
            {
                "steam.item_id": item.id,
                "sync.collection_id": collection_id,
                "sync.force": force,
            },
        ) as span:
            logging.info("Downloading %s...", item.id)
            if not force and self._is_satisfied(item):
                record = self.store.get(item.id)
                if record is not None and record.add_collection(collection_id):
                    logging.debug("Workshop %s joined collection %s", item.id, collection_id)
                self._commit()
                span.set_attribute("sync.outcome", ItemOutcome.SKIPPED.value)
                logging.info("Workshop %s is up to date, skipped", item.id)
                return ItemOutcome.SKIPPED

            files = self._transfer_and_ingest(item)
            record = self.store.get(item.id)
            collection_ids = set(record.collection_ids) if record is not None else set()
            updated = TrackedItem(
                id=item.id,
                title=item.title,
                version_marker=item.version_marker,
                files=files,
                collection_ids=collection_ids,
            )
            updated.add_collection(collection_id)
            self.store.upsert(updated)
            self._commit()
            span.set_attribute("sync.outcome", ItemOutcome.TRANSFERRED.value)
            span.set_attribute("sync.files", len(files))
            logging.info("Successfully downloaded %s (%s files)", item.id, len(files))
            return ItemOutcome.TRANSFERRED

    def sync_collection(
        self, collection: WorkshopCollection, force: bool = False
    ) -> CollectionReport:
        report = CollectionReport(id=collection.id, title=collection.title)
        with start_span(
            "sync.collection",
            {"steam.collection_id": collection.id, "sync.members": len(collection.member_ids)},
        ) as span:
            logging.info(
                "Downloading collection: %s (%s items)",
                collection.title,
                len(collection.member_ids),
            )
            for member_id in collection.member_ids:
                try:
                    resolved = self.resolver.resolve(member_id)
                    if isinstance(resolved, WorkshopCollection):
                        logging.warning(
                            "Ignoring nested collection %s inside %s",
                            member_id,
                            collection.id,
                        )
                        report.ignored.append(member_id)
                        continue
                    outcome = self.sync_item(resolved, collection_id=collection.id, force=force)
                except (ResolutionError, TransferFailed) as exc:
                    logging.error("Collection %s member %s failed: %s", collection.id, member_id, exc)
                    span.record_exception(exc)
                    report.failed[member_id] = str(exc)
                    continue
                if outcome is ItemOutcome.SKIPPED:
                    report.skipped.append(member_id)
                else:
                    report.transferred.append(member_id)
            span.set_attribute("sync.failed", len(report.failed))
            self._commit()
        logging.info(
            "Collection %s: transferred=%s skipped=%s failed=%s ignored=%s",
            collection.id,
            len(report.transferred),
            len(report.skipped),
            len(report.failed),
            len(report.ignored),
        )
        return report

    def update_all(self, force: bool = False) -> UpdateReport:
        report = UpdateReport()
        workshop_ids = self.store.ids()
        if not workshop_ids:
            logging.info("No subscribed items. Use 'download <id>' to add items.")
            return report
        with start_span(
            "sync.update_all", {"sync.items": len(workshop_ids), "sync.force": force}
        ) as span:
            logging.info(
                "Updating %s items%s...",
                len(workshop_ids),
                " (forced)" if force else "",
            )
            for workshop_id in workshop_ids:
                try:
                    resolved = self.resolver.resolve(workshop_id)
                    if not isinstance(resolved, WorkshopItem):
                        logging.warning("Tracked id %s now resolves as a collection", workshop_id)
                        report.ignored.append(workshop_id)
                        continue
                    outcome = self.sync_item(resolved, force=force)
                except (ResolutionError, TransferFailed) as exc:
                    logging.error("Update of %s failed: %s", workshop_id, exc)
                    span.record_exception(exc)
                    report.failed[workshop_id] = str(exc)
                    continue
                if outcome is ItemOutcome.SKIPPED:
                    report.skipped.append(workshop_id)
                else:
                    report.transferred.append(workshop_id)
            self._commit()
        return report

    def remove(self, workshop_id: str) -> RemovalReport:
        workshop_id = str(workshop_id)
        report = RemovalReport(id=workshop_id)
        with start_span("sync.remove", {"steam.item_id": workshop_id}) as span:
            if workshop_id in self.store:
                self._remove_item(workshop_id, report)

            orphans = [
                item.id
                for item in self.store.items()
                if item.collection_ids == {workshop_id}
            ]
            for orphan_id in orphans:
                logging.info("Removing %s, orphaned by collection %s", orphan_id, workshop_id)
                self._remove_item(orphan_id, report)

            for item in self.store.items():
                if workshop_id in item.collection_ids:
                    item.collection_ids.discard(workshop_id)
                    logging.info("Workshop %s left removed collection %s", item.id, workshop_id)
            self._commit()
            span.set_attribute("sync.removed", len(report.removed_ids))
        if not report.removed_ids:
            logging.info("Nothing tracked for %s", workshop_id)
        return report

    def list_items(self) -> List[TrackedItem]:
        return self.store.items()

    def storage_info(self) -> StorageInfo:
        items = self.store.items()
        return StorageInfo(
            cache_root=self.cache_root,
            store_path=self.store.path,
            item_count=len(items),
            file_count=sum(len(item.files) for item in items),
            used_bytes=directory_size(self.cache_root),
        )

    def _is_satisfied(self, item: WorkshopItem) -> bool:
        record = self.store.get(item.id)
        if record is None:
            return False
        if record.version_marker != item.version_marker:
            logging.info(
                "Workshop %s changed upstream (%s -> %s)",
                item.id,
                record.version_marker,
                item.version_marker,
            )
            return False
        return self.checker.verify(record)

    def _transfer_and_ingest(self, item: WorkshopItem) -> List[TrackedFile]:
        self._run_transfer(item.id)
        source_path = self.agent.content_path(self.app_id, item.id)
        if not source_path.exists():
            raise TransferFailed(item.id, f"downloaded files not found at {source_path}")
        files = self.tracker.ingest(source_path, self.cache_root, self.policy)
        if not files:
            raise TransferFailed(item.id, "no files produced")
        return files

    def _run_transfer(self, item_id: str) -> None:
        result = TransferResult(False, "not attempted")
        for attempt in range(1, self.transfer_attempts + 1):
            result = self.agent.transfer(self.app_id, item_id)
            if result.ok:
                return
            reason = result.reason or "unknown reason"
            logging.error(
                "Transfer attempt %s/%s failed for %s: %s",
                attempt,
                self.transfer_attempts,
                item_id,
                reason,
            )
            if attempt >= self.transfer_attempts or not result.retryable:
                break
            delay = self.transfer_backoff * (2 ** (attempt - 1))
            if delay > 0:
                logging.warning("Retrying transfer for %s in %.1fs", item_id, delay)
                time.sleep(delay)
        raise TransferFailed(item_id, result.reason or "transfer agent reported failure")

    def _remove_item(self, workshop_id: str, report: RemovalReport) -> None:
        record = self.store.get(workshop_id)
        if record is None:
            return
        for tracked in record.files:
            status = self.checker.check_file(tracked)
            if status is FileStatus.MISSING:
                logging.debug("Already gone: %s", tracked.relative_path)
                report.missing_files.append(tracked.relative_path)
                continue
            if status is FileStatus.MODIFIED:
                logging.warning(
                    "Skipping %s - file modified, delete manually",
                    tracked.relative_path,
                )
                report.skipped_modified.append(tracked.relative_path)
                continue
            self._delete_path(self.checker.resolve(tracked))
            logging.info("Removed: %s", tracked.relative_path)
            report.deleted_files.append(tracked.relative_path)
        self.store.remove(workshop_id)
        self._commit()
        report.removed_ids.append(workshop_id)

    @staticmethod
    def _delete_path(path: Path) -> None:
        try:
            if path.is_dir() and not path.is_symlink():
                shutil.rmtree(path)
            else:
                path.unlink()
        except FileNotFoundError:
            pass
        except OSError as exc:
            raise IoError(f"Failed to remove {path}: {exc}") from exc

    def _commit(self) -> None:
        self.store.save()
        if self.maps_file is not None:
            write_workshop_maps(self.maps_file, self.store.items())


def build_engine(config: Config) -> SyncEngine:
    validate_config(config)
    store = MetadataStore(config.metadata_file)
    store.load()
    resolver = WorkshopResolver(
        timeout=config.timeout,
        policy=RetryPolicy(
            retries=config.http_retries,
            backoff=config.http_retry_backoff,
            request_delay=config.http_request_delay,
        ),
    )
    agent = SteamCmdAgent(
        config.steamcmd_path,
        config.steamcmd_install_dir,
        verbose=config.steamcmd_verbose,
    )
    policy = InclusionPolicy(config.whitelist)
    if not policy:
        logging.warning("WM_WHITELIST is empty: downloaded files will not be tracked")
    return SyncEngine(
        store,
        resolver,
        agent,
        app_id=config.app_id,
        cache_root=config.output_dir,
        policy=policy,
        maps_file=config.workshop_maps_file,
        transfer_attempts=config.transfer_attempts,
        transfer_backoff=config.transfer_backoff,
    )

