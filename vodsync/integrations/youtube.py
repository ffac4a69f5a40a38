"""YouTube Data API client with ETag-conditional requests."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from googleapiclient.errors import HttpError

from ..core.conditional import Fetched, FetchResult, NotModified
from ..errors import MalformedInputError, TransientSourceError
from ..models import ListMember, VideoDetail

logger = logging.getLogger(__name__)

NOT_MODIFIED_STATUS = 304


@dataclass(slots=True)
class ListPage:
    """One page of playlist members."""

    members: list[ListMember] = field(default_factory=list)
    next_cursor: str | None = None


def parse_video_item(item: dict[str, Any]) -> VideoDetail:
    """Normalise a ``videos.list`` item requested with snippet and liveStreamingDetails."""
    video_id = item.get("id") or "?"
    try:
        snippet = item["snippet"]
        thumbnails = snippet.get("thumbnails") or {}
        thumbnail = (thumbnails.get("medium") or thumbnails.get("default") or {}).get("url", "")
        details = item.get("liveStreamingDetails") or {}
        return VideoDetail(
            id=item["id"],
            channel_id=snippet.get("channelId"),
            published_at=snippet["publishedAt"],
            title=snippet["title"],
            thumbnail=thumbnail,
            actual_start_time=details.get("actualStartTime") or None,
            actual_end_time=details.get("actualEndTime") or None,
        )
    except (KeyError, TypeError, AttributeError) as exc:
        raise MalformedInputError("video", video_id, f"missing field {exc}") from exc


def parse_playlist_item(item: dict[str, Any]) -> ListMember:
    try:
        snippet = item["snippet"]
        return ListMember(
            video_id=snippet["resourceId"]["videoId"],
            owner_channel_id=snippet.get("videoOwnerChannelId"),
        )
    except (KeyError, TypeError) as exc:
        raise MalformedInputError("playlist_item", item.get("id"), f"missing field {exc}") from exc


class YouTubeClient:
    """Wraps the discovery client; every call honours the last seen ETag."""

    def __init__(self, service: Any) -> None:
        self._service = service

    def _execute(self, request: Any, token: str, kind: str, resource_id: str) -> dict[str, Any] | NotModified:
        if token:
            request.headers["If-None-Match"] = token
        try:
            return request.execute()
        except HttpError as exc:
            if exc.resp.status == NOT_MODIFIED_STATUS:
                return NotModified(token=exc.resp.get("etag") or token)
            raise TransientSourceError(kind, resource_id, f"YouTube API error: {exc}") from exc

    def search_live(self, channel_id: str, token: str) -> FetchResult[list[str]]:
        """Ids of videos the channel is currently streaming."""
        request = self._service.search().list(
            part="snippet",
            eventType="live",
            channelId=channel_id,
            type="video",
        )
        response = self._execute(request, token, "live_search", channel_id)
        if isinstance(response, NotModified):
            return response
        ids = [
            item["id"]["videoId"]
            for item in response.get("items", [])
            if (item.get("id") or {}).get("videoId")
        ]
        return Fetched(payload=ids, token=response.get("etag", ""))

    def get_detail(self, video_id: str, token: str) -> FetchResult[VideoDetail | None]:
        """Full detail for one video, or ``None`` when the API no longer returns it."""
        request = self._service.videos().list(part="snippet,liveStreamingDetails", id=video_id)
        response = self._execute(request, token, "video", video_id)
        if isinstance(response, NotModified):
            return response
        etag = response.get("etag", "")
        items = response.get("items", [])
        if not items:
            logger.debug("Video %s not returned by the API (private or deleted)", video_id)
            return Fetched(payload=None, token=etag)
        detail = parse_video_item(items[0])
        detail.token = etag
        return Fetched(payload=detail, token=etag)

    def get_list_page(
        self,
        list_id: str,
        token: str,
        page_cursor: str | None = None,
        page_size: int = 45,
    ) -> FetchResult[ListPage]:
        request = self._service.playlistItems().list(
            part="snippet,contentDetails",
            playlistId=list_id,
            maxResults=page_size,
            pageToken=page_cursor,
        )
        response = self._execute(request, token, "playlist", list_id)
        if isinstance(response, NotModified):
            return response
        members: list[ListMember] = []
        for item in response.get("items", []):
            try:
                members.append(parse_playlist_item(item))
            except MalformedInputError as exc:
                logger.warning("Skipping playlist item: %s", exc)
        return Fetched(
            payload=ListPage(members=members, next_cursor=response.get("nextPageToken") or None),
            token=response.get("etag", ""),
        )
