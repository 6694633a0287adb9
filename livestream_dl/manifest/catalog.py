"""
Extracts selectable renditions from a master playlist and resolves a
selection into the media playlists to capture.
"""

import logging
from dataclasses import replace
from typing import NamedTuple, Optional, Sequence

from langcodes import tag_is_valid

from livestream_dl.exceptions import SelectionError
from livestream_dl.models.segment import MasterManifest, Rendition, Role, Variant
from livestream_dl.utils.path import MAIN_STREAM, stream_name

log = logging.getLogger(__name__)


class Choice(NamedTuple):
    """One row of the selection UI."""

    role: Role
    language: Optional[str]
    bandwidth: Optional[int]
    identifier: str


class VariantCatalog:
    """
    Renditions of a master playlist grouped by role.

    Video renditions are ordered by descending bandwidth; audio and subtitle
    alternates are grouped by language tag in playlist order.
    """

    def __init__(self, master: MasterManifest, variants: Sequence[Variant]):
        self.master = master
        self._by_id = {v.identifier: v for v in variants}
        self.videos: list[Variant] = sorted(
            (v for v in variants if v.role is Role.VIDEO),
            key=lambda v: v.bandwidth or 0,
            reverse=True,
        )
        self.audio: dict[Optional[str], list[Variant]] = {}
        self.subtitles: dict[Optional[str], list[Variant]] = {}
        for variant in variants:
            if variant.role is Role.AUDIO:
                self.audio.setdefault(variant.language, []).append(variant)
            elif variant.role is Role.SUBTITLE:
                self.subtitles.setdefault(variant.language, []).append(variant)

    @classmethod
    def from_manifest(cls, master: MasterManifest) -> "VariantCatalog":
        """Builds a catalog, flagging renditions whose language tag is malformed."""
        variants = []
        for variant in master.variants:
            if variant.language is not None and not tag_is_valid(variant.language):
                log.warning(
                    f"[yellow]Rendition '{variant.name or variant.identifier}' has an "
                    f"invalid language tag: {variant.language!r}[/yellow]"
                )
                variant = replace(variant, language_valid=False)
            variants.append(variant)
        return cls(master, variants)

    @property
    def invalid_language_tags(self) -> list[Variant]:
        return [v for v in self._by_id.values() if not v.language_valid]

    @property
    def alternates(self) -> list[Variant]:
        return [v for v in self._by_id.values() if v.is_alternate]

    def get(self, identifier: str) -> Variant:
        try:
            return self._by_id[identifier]
        except KeyError:
            raise SelectionError(f"Unknown rendition identifier: {identifier!r}")

    def choices(self) -> list[Choice]:
        """Returns `(role, language, bandwidth, identifier)` rows for the selection UI."""
        rows = [Choice(v.role, v.language, v.bandwidth, v.identifier) for v in self.videos]
        for groups in (self.audio, self.subtitles):
            for variants in groups.values():
                rows.extend(
                    Choice(v.role, v.language, v.bandwidth, v.identifier)
                    for v in variants
                )
        return rows

    def _referenced_alternates(self, video: Variant) -> list[Variant]:
        """Alternates in the groups the chosen variant stream references."""
        wanted = {
            Role.AUDIO: video.audio_group,
            Role.VIDEO: video.video_group,
            Role.SUBTITLE: video.subtitle_group,
        }
        return [
            v
            for v in self.alternates
            if v.uri is not None
            and v.uri != video.uri
            and wanted.get(v.role) is not None
            and v.group_id == wanted[v.role]
        ]

    def select(
        self,
        video_id: Optional[str] = None,
        alternate_ids: Optional[Sequence[str]] = None,
    ) -> list[Rendition]:
        """
        Resolves a selection into renditions to capture.

        Args:
            video_id: The video rendition; defaults to the highest bandwidth.
            alternate_ids: Audio/subtitle/video alternates. When None, every
                alternate in the groups referenced by the video rendition is
                selected.

        Raises:
            SelectionError: On unknown identifiers or renditions without a URI.
        """
        if video_id is None:
            if not self.videos:
                raise SelectionError("The master playlist lists no video renditions.")
            video = self.videos[0]
        else:
            video = self.get(video_id)
            if video.role is not Role.VIDEO:
                raise SelectionError(f"Rendition {video_id!r} is not a video rendition.")
        if video.uri is None:
            raise SelectionError(f"Rendition {video.identifier!r} has no playlist URI.")

        if alternate_ids is None:
            alternates = self._referenced_alternates(video)
        else:
            alternates = []
            for identifier in alternate_ids:
                variant = self.get(identifier)
                if not variant.is_alternate or variant.uri is None:
                    raise SelectionError(
                        f"Rendition {identifier!r} is not a selectable alternate."
                    )
                alternates.append(variant)

        renditions = [Rendition(stream_id=MAIN_STREAM, uri=video.uri, role=Role.VIDEO)]
        used = {MAIN_STREAM}
        for variant in alternates:
            label = variant.name or variant.language or variant.identifier
            stream_id = stream_name(variant.role, label)
            if stream_id in used:
                stream_id = stream_name(variant.role, f"{label}_{variant.identifier}")
            used.add(stream_id)
            renditions.append(
                Rendition(
                    stream_id=stream_id,
                    uri=variant.uri,
                    role=variant.role,
                    language=variant.language if variant.language_valid else None,
                    name=variant.name,
                )
            )

        log.debug(
            f"Selected {video.identifier} with {len(alternates)} alternate rendition(s)"
        )
        return renditions

    def default_selection(self) -> list[Rendition]:
        """Highest-bandwidth video plus the alternates it references."""
        return self.select()
