"""Errors raised by the resolver, the queue and the playback controller.

Every error carries the i18n key of the message shown to the invoking user.
"""
from __future__ import annotations

from enum import Enum, auto


class FailureReason(Enum):
    MALFORMED_LINK = auto()
    LIVE_CONTENT_UNSUPPORTED = auto()
    NO_RESULT = auto()
    UPSTREAM_ERROR = auto()


class MusicError(Exception):
    key = "error_generic"


class ResolutionFailure(MusicError):
    """A query could not be turned into a playable item."""

    reason: FailureReason = FailureReason.NO_RESULT


class MalformedLink(ResolutionFailure):
    key = "malformed_link"
    reason = FailureReason.MALFORMED_LINK


class LiveContentUnsupported(ResolutionFailure):
    key = "live_unsupported"
    reason = FailureReason.LIVE_CONTENT_UNSUPPORTED


class NoResult(ResolutionFailure):
    key = "no_result"
    reason = FailureReason.NO_RESULT


class UpstreamError(ResolutionFailure):
    key = "upstream_error"
    reason = FailureReason.UPSTREAM_ERROR


class UnplayableItem(MusicError):
    """Every streaming tier failed for one item."""

    key = "unplayable"


class InvalidVolume(MusicError):
    key = "invalid_volume"


class NothingPlaying(MusicError):
    key = "nothing_playing"


class NothingToSkip(NothingPlaying):
    key = "nothing_to_skip"


class NotInVoiceChannel(MusicError):
    key = "not_in_voice"
