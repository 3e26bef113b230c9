"""Download orchestrator.

Composes the stores, the admission queue and the external collaborators into
the end-to-end flow:

    resolve -> present choices -> cache check -> admit -> fetch -> archive
    -> cache -> deliver

Critical-path failures raise ``PipelineError`` subclasses. Best-effort side
effects (progress messages, thumbnails, probe, hit accounting, cache writes)
report through ``Outcome`` and never fail a flow.
"""

import asyncio
import secrets
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy.exc import SQLAlchemyError

from clipvault.core.exceptions import (
    ArchiveFailure,
    CacheWriteFailure,
    DeliveryFailure,
    FetchFailure,
    FormatNotOffered,
    NoUsableFormat,
    PipelineError,
    QueueCapacityExceeded,
    ResolutionError,
    SessionExpired,
)
from clipvault.core.metrics import MetricsCollector
from clipvault.delivery.base import ChatId, DeliveryChannel, DeliveryError, MediaAttributes
from clipvault.fetcher.base import FetchCompleted, FetchRequest, MediaFetcher, ProgressEvent
from clipvault.fetcher.media_tools import MediaTools
from clipvault.models.cache import ArtifactKind, CacheEntry
from clipvault.models.flow import Flow, FlowState, ResolutionResult, SelectionResult
from clipvault.models.media import (
    CacheFingerprint,
    FormatCandidate,
    Requester,
    VideoMetadata,
    format_list,
)
from clipvault.models.outcome import Outcome
from clipvault.services.admission_queue import AdmissionQueue, QueueTask
from clipvault.services.dedup import InFlightRegistry
from clipvault.services.flows import FlowTracker
from clipvault.services.format_resolver import presentation_window, resolve_formats
from clipvault.services.result_cache import ResultCache
from clipvault.services.session_store import SessionStore
from clipvault.services.workspace import Workspace

logger = structlog.get_logger(__name__)

MAX_TITLE_LENGTH = 100

MSG_FROM_CACHE = "Sent from cache."
MSG_DUPLICATE = "Already downloading, please wait..."
MSG_QUEUED = "Added to the download queue..."
MSG_DOWNLOAD_STARTING = "Starting download..."
MSG_UPLOADING = "Uploading..."
MSG_CANCELLED = "Download cancelled, the service is shutting down."


def compact_number(value: int) -> str:
    """Render a counter as 999, 1.2K or 3.4M."""
    if value >= 1_000_000:
        return f"{value / 1_000_000:.1f}M"
    if value >= 1_000:
        return f"{value / 1_000:.1f}K"
    return str(value)


def format_upload_date(value: str) -> str:
    """YYYYMMDD -> DD.MM.YYYY, 'N/A' when malformed."""
    if not value or len(value) != 8 or not value.isdigit():
        return "N/A"
    return f"{value[6:8]}.{value[4:6]}.{value[0:4]}"


def format_duration(seconds: int) -> str:
    """Seconds -> H:MM:SS, or M:SS under an hour."""
    seconds = max(0, int(seconds))
    hours, rest = divmod(seconds, 3600)
    minutes, secs = divmod(rest, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"


def summary_caption(metadata: VideoMetadata) -> str:
    """Caption shown with the quality choices."""
    return "\n".join(
        [
            metadata.title,
            "",
            f"Views {compact_number(metadata.view_count)} • Likes {compact_number(metadata.like_count)}",
            f"Uploaded {format_upload_date(metadata.upload_date)}",
            f"By {metadata.uploader}",
            f"Duration {format_duration(metadata.duration)}",
        ]
    )


def delivery_caption(title: str, rendition: str, signature: Optional[str] = None) -> str:
    """Caption attached to a delivered artifact."""
    lines = [title, "", rendition]
    if signature:
        lines.extend(["", signature])
    return "\n".join(lines)


def build_metadata(
    data: Dict[str, Any], url: str, formats: List[FormatCandidate]
) -> VideoMetadata:
    """Turn a raw metadata dump into VideoMetadata carrying the offered formats."""
    return VideoMetadata(
        id=str(data["id"]),
        url=data.get("webpage_url") or url,
        title=(data.get("title") or "")[:MAX_TITLE_LENGTH],
        uploader=data.get("uploader") or data.get("channel") or "Unknown",
        duration=int(data.get("duration") or 0),
        view_count=int(data.get("view_count") or 0),
        like_count=int(data.get("like_count") or 0),
        upload_date=data.get("upload_date") or "",
        thumbnail=data.get("thumbnail") or "",
        width=int(data.get("width") or 0),
        height=int(data.get("height") or 0),
        formats=tuple(formats),
    )


class ProgressThrottle:
    """Decides which progress readings are worth reporting.

    A reading is reported once it moves at least ``step`` points past the last
    reported one, and readings at 99% or above are always reported.
    """

    def __init__(self, step: float = 5.0) -> None:
        self.step = step
        self.last = 0.0

    def should_report(self, percent: float) -> bool:
        if percent - self.last >= self.step or (percent >= 99 and percent > self.last):
            self.last = percent
            return True
        return False


class Orchestrator:
    """Drives resolution and selection flows.

    All collaborators are passed in; the orchestrator owns no global state.
    """

    def __init__(
        self,
        fetcher: MediaFetcher,
        media_tools: MediaTools,
        delivery: DeliveryChannel,
        sessions: SessionStore,
        cache: ResultCache,
        queue: AdmissionQueue,
        dedup: InFlightRegistry,
        flows: FlowTracker,
        workspace: Workspace,
        min_height: int = 360,
        max_height: int = 1080,
        progress_step: float = 5.0,
        signature: Optional[str] = None,
    ) -> None:
        self.fetcher = fetcher
        self.media_tools = media_tools
        self.delivery = delivery
        self.sessions = sessions
        self.cache = cache
        self.queue = queue
        self.dedup = dedup
        self.flows = flows
        self.workspace = workspace
        self.min_height = min_height
        self.max_height = max_height
        self.progress_step = progress_step
        self.signature = signature

    async def resolve(self, url: str) -> ResolutionResult:
        """Fetch metadata, build the choice ladder and open a session.

        Raises:
            ResolutionError: If the resource is unavailable.
            NoUsableFormat: If no rendition survives filtering.
        """
        logger.info("resolution_started", url=url)
        try:
            data = await self.fetcher.fetch_metadata(url)
        except ResolutionError:
            MetricsCollector.record_flow(FlowState.RESOLUTION_FAILED.value)
            raise

        ladder = resolve_formats(data.get("formats") or [])
        choices = presentation_window(ladder, self.min_height, self.max_height)
        if not choices:
            MetricsCollector.record_flow(FlowState.NO_USABLE_FORMAT.value)
            logger.info(
                "resolution_no_usable_format",
                url=url,
                resource_id=data.get("id"),
                ladder=format_list(ladder),
            )
            raise NoUsableFormat(f"No rendition within {self.min_height}-{self.max_height}p")

        metadata = build_metadata(data, url, choices)
        session_id = secrets.token_hex(8)
        await self.sessions.put(session_id, metadata)

        logger.info(
            "resolution_completed",
            session_id=session_id,
            resource_id=metadata.id,
            choices=format_list(choices),
        )
        return ResolutionResult(
            session_id=session_id,
            metadata=metadata,
            choices=choices,
            caption=summary_caption(metadata),
        )

    async def select(
        self,
        session_id: str,
        format_id: str,
        rendition: str,
        requester: Requester,
    ) -> SelectionResult:
        """Handle a quality selection.

        Returns immediately with DELIVERED (cache hit), DUPLICATE_IN_FLIGHT or
        QUEUED. A queued selection carries a ``completion`` future.

        Raises:
            SessionExpired: If the session is unknown or expired.
            FormatNotOffered: If the selection is not in the session's ladder.
            QueueCapacityExceeded: If the admission queue is full.
        """
        session = await self.sessions.get(session_id)
        if session is None:
            MetricsCollector.record_flow(FlowState.SESSION_EXPIRED.value)
            raise SessionExpired(f"Session not found or expired: {session_id}")

        metadata = session.metadata
        candidate = metadata.find_format(format_id, rendition)
        if candidate is None:
            MetricsCollector.record_flow(FlowState.NO_USABLE_FORMAT.value)
            raise FormatNotOffered(f"{rendition}:{format_id} was not offered for {metadata.id}")

        fingerprint = CacheFingerprint(metadata.id, candidate.format_id, candidate.rendition)
        flow = self.flows.create_flow(fingerprint, requester.user_id)

        with structlog.contextvars.bound_contextvars(flow_id=flow.flow_id):
            served = await self._serve_from_cache(flow, metadata, candidate, requester)
            if served:
                return SelectionResult(
                    flow_id=flow.flow_id,
                    state=FlowState.DELIVERED,
                    message=MSG_FROM_CACHE,
                    from_cache=True,
                )

            key = fingerprint.dedup_key
            if not self.dedup.try_begin(key):
                self.flows.transition(
                    flow.flow_id, FlowState.DUPLICATE_IN_FLIGHT, error_message=MSG_DUPLICATE
                )
                return SelectionResult(
                    flow_id=flow.flow_id,
                    state=FlowState.DUPLICATE_IN_FLIGHT,
                    message=MSG_DUPLICATE,
                )

            task = QueueTask(
                dedup_key=key,
                work=lambda: self._download(flow.flow_id, metadata, candidate, requester),
            )
            try:
                completion = self.queue.add(task)
            except QueueCapacityExceeded as e:
                self.dedup.end(key)
                self.flows.transition(
                    flow.flow_id, FlowState.QUEUE_REJECTED, error_message=e.user_message
                )
                raise

            completion.add_done_callback(
                lambda fut: self._on_task_done(key, flow.flow_id, fut)
            )
            # The admitted task has not run yet; it only starts at the next await
            self.flows.transition(flow.flow_id, FlowState.QUEUED)

            position = self.queue.position(key)
            message = MSG_QUEUED if position is None else f"{MSG_QUEUED} Position {position}."
            return SelectionResult(
                flow_id=flow.flow_id,
                state=FlowState.QUEUED,
                message=message,
                completion=completion,
            )

    def _on_task_done(self, key: Any, flow_id: str, future: "asyncio.Future[Any]") -> None:
        self.dedup.end(key)
        if future.cancelled():
            # Cancelled by queue shutdown, before or during the fetch
            self.flows.transition(flow_id, FlowState.FETCH_FAILED, error_message=MSG_CANCELLED)
            return
        # Mark the outcome as observed; failures are already logged and recorded on the flow
        future.exception()

    async def _serve_from_cache(
        self,
        flow: Flow,
        metadata: VideoMetadata,
        candidate: FormatCandidate,
        requester: Requester,
    ) -> bool:
        """Try to deliver a cached artifact. Returns True on success.

        A failed lookup counts as a miss. A rejected reference is stale and
        falls through to a fresh fetch.
        """
        try:
            entry = await self.cache.get(flow.fingerprint)
        except SQLAlchemyError as e:
            logger.warning("cache_lookup_failed", fingerprint=str(flow.fingerprint), error=str(e))
            entry = None

        if entry is None:
            MetricsCollector.record_cache_lookup("miss")
            return False

        caption = delivery_caption(metadata.title, candidate.rendition, self.signature)
        try:
            await self.delivery.send_cached(
                requester.chat_id,
                entry.artifact_ref,
                entry.kind,
                caption,
                self._attributes(metadata, entry.kind),
            )
        except DeliveryError as e:
            MetricsCollector.record_cache_lookup("stale")
            logger.warning(
                "cached_reference_stale",
                fingerprint=str(flow.fingerprint),
                entry_id=entry.entry_id,
                error=str(e),
            )
            return False

        MetricsCollector.record_cache_lookup("hit")
        await self.cache.record_hit(entry.entry_id, requester.user_id)
        self.flows.transition(
            flow.flow_id, FlowState.DELIVERED, from_cache=True, archived=True, progress=100.0
        )
        return True

    async def _download(
        self,
        flow_id: str,
        metadata: VideoMetadata,
        candidate: FormatCandidate,
        requester: Requester,
    ) -> Flow:
        """Queue work: fetch, archive, cache and deliver one rendition."""
        with structlog.contextvars.bound_contextvars(flow_id=flow_id):
            kind = ArtifactKind.AUDIO if candidate.is_audio else ArtifactKind.VIDEO
            base = self.workspace.artifact_base(metadata.id, candidate.rendition)
            progress_msg = await self._notify(requester.chat_id, MSG_DOWNLOAD_STARTING)

            try:
                self.flows.transition(flow_id, FlowState.FETCHING)
                started = time.monotonic()
                artifact = await self._fetch(
                    flow_id,
                    FetchRequest(
                        url=metadata.url,
                        format_id=candidate.format_id,
                        is_audio=candidate.is_audio,
                        has_audio=candidate.has_audio,
                        output_base=base,
                    ),
                    requester.chat_id,
                    progress_msg,
                )
                size = _file_size(artifact)
                MetricsCollector.record_fetch(kind.value, time.monotonic() - started, size)

                self.flows.transition(flow_id, FlowState.ARCHIVING, progress=100.0)
                await self._edit(requester.chat_id, progress_msg, MSG_UPLOADING)

                flow = await self._archive_and_deliver(
                    flow_id, metadata, candidate, requester, kind, artifact, size
                )
            except PipelineError as e:
                self.flows.transition(flow_id, e.state, error_message=e.user_message)
                await self._edit(requester.chat_id, progress_msg, e.user_message)
                raise
            except Exception:
                logger.exception("download_crashed")
                self.flows.transition(
                    flow_id, FlowState.FETCH_FAILED, error_message=FetchFailure.user_message
                )
                await self._edit(requester.chat_id, progress_msg, FetchFailure.user_message)
                raise
            finally:
                self.workspace.purge(base)

            if progress_msg.ok:
                await self._delete(requester.chat_id, progress_msg.value)
            return flow

    async def _fetch(
        self,
        flow_id: str,
        request: FetchRequest,
        chat_id: ChatId,
        progress_msg: Outcome[int],
    ) -> Path:
        throttle = ProgressThrottle(self.progress_step)
        artifact: Optional[Path] = None

        async for event in self.fetcher.fetch(request):
            if isinstance(event, ProgressEvent):
                if throttle.should_report(event.percent):
                    self.flows.update_progress(flow_id, event.percent)
                    await self._edit(chat_id, progress_msg, f"Downloading... {int(event.percent)}%")
            elif isinstance(event, FetchCompleted):
                artifact = event.path

        if artifact is None or not artifact.is_file():
            raise FetchFailure("Fetcher finished without producing an artifact")
        return artifact

    async def _archive_and_deliver(
        self,
        flow_id: str,
        metadata: VideoMetadata,
        candidate: FormatCandidate,
        requester: Requester,
        kind: ArtifactKind,
        artifact: Path,
        size: int,
    ) -> Flow:
        thumbnail: Optional[Path] = None
        if kind == ArtifactKind.VIDEO:
            thumb = await self.media_tools.make_thumbnail(
                artifact, self.workspace.thumbnail_path(artifact)
            )
            thumbnail = thumb.value if thumb.ok else None
            probe = await self.media_tools.probe_streaming_ready(artifact)
            if not probe.unwrap_or(False):
                logger.warning("artifact_not_streaming_ready", artifact=artifact.name)

        attributes = self._attributes(metadata, kind, thumbnail)
        caption = delivery_caption(metadata.title, candidate.rendition, self.signature)

        try:
            receipt = await self.delivery.archive(artifact, kind, attributes)
        except DeliveryError as e:
            logger.warning("archive_failed", error=str(e))
            return await self._deliver_directly(
                flow_id, requester, artifact, kind, caption, attributes, e
            )

        entry = CacheEntry(
            fingerprint=CacheFingerprint(metadata.id, candidate.format_id, candidate.rendition),
            artifact_ref=receipt.artifact_ref,
            archive_message_id=receipt.message_id,
            byte_size=size,
            kind=kind,
            created_by=requester.user_id,
            title=metadata.title,
            uploader=metadata.uploader or None,
            duration=metadata.duration or None,
        )
        await self._store_entry(entry)

        try:
            await self.delivery.send_cached(
                requester.chat_id, receipt.artifact_ref, kind, caption, attributes
            )
        except DeliveryError as e:
            raise DeliveryFailure(f"Delivery by reference failed: {e}") from e

        return self.flows.transition(flow_id, FlowState.DELIVERED, archived=True)

    async def _deliver_directly(
        self,
        flow_id: str,
        requester: Requester,
        artifact: Path,
        kind: ArtifactKind,
        caption: str,
        attributes: MediaAttributes,
        archive_error: DeliveryError,
    ) -> Flow:
        """Fallback when archiving failed: upload the local artifact to the requester."""
        try:
            await self.delivery.send_file(requester.chat_id, artifact, kind, caption, attributes)
        except DeliveryError as e:
            raise ArchiveFailure(
                f"Archive failed ({archive_error}) and direct delivery failed ({e})"
            ) from e

        logger.info("delivered_without_archive")
        return self.flows.transition(flow_id, FlowState.DELIVERED, archived=False)

    async def _store_entry(self, entry: CacheEntry) -> Outcome[CacheEntry]:
        try:
            stored = await self.cache.set(entry)
        except CacheWriteFailure as e:
            logger.error("cache_write_failed", fingerprint=str(entry.fingerprint), error=str(e))
            return Outcome.failure(str(e))
        return Outcome.success(stored)

    @staticmethod
    def _attributes(
        metadata: VideoMetadata, kind: ArtifactKind, thumbnail: Optional[Path] = None
    ) -> MediaAttributes:
        return MediaAttributes(
            title=metadata.title,
            performer=metadata.uploader or None,
            duration=metadata.duration,
            width=metadata.width if kind == ArtifactKind.VIDEO else 0,
            height=metadata.height if kind == ArtifactKind.VIDEO else 0,
            thumbnail=thumbnail,
            supports_streaming=kind == ArtifactKind.VIDEO,
        )

    async def _notify(self, chat_id: ChatId, text: str) -> Outcome[int]:
        try:
            return Outcome.success(await self.delivery.send_message(chat_id, text))
        except DeliveryError as e:
            logger.debug("progress_message_failed", error=str(e))
            return Outcome.failure(str(e))

    async def _edit(self, chat_id: ChatId, message: Outcome[int], text: str) -> Outcome[None]:
        if not message.ok or message.value is None:
            return Outcome.failure("no progress message")
        try:
            await self.delivery.edit_message(chat_id, message.value, text)
        except DeliveryError as e:
            logger.debug("progress_edit_failed", error=str(e))
            return Outcome.failure(str(e))
        return Outcome.success()

    async def _delete(self, chat_id: ChatId, message_id: Optional[int]) -> Outcome[None]:
        if message_id is None:
            return Outcome.failure("no progress message")
        try:
            await self.delivery.delete_message(chat_id, message_id)
        except DeliveryError as e:
            logger.debug("progress_delete_failed", error=str(e))
            return Outcome.failure(str(e))
        return Outcome.success()

    async def stats(self) -> Dict[str, Any]:
        """Queue, cache and session counters."""
        queue = self.queue.status()
        cache = await self.cache.stats()
        sessions = await self.sessions.stats()
        return {
            "queue": {"active": queue.active, "queued": queue.queued},
            "cache": {
                "total_entries": cache.total_entries,
                "total_hits": cache.total_hits,
                "total_bytes": cache.total_bytes,
                "video_entries": cache.video_entries,
                "audio_entries": cache.audio_entries,
            },
            "sessions": sessions,
            "flows": {
                "tracked": self.flows.get_flow_count(),
                "active": self.flows.get_active_flow_count(),
            },
        }


def _file_size(path: Path) -> int:
    try:
        return path.stat().st_size
    except OSError:
        return 0
