# social_publisher/adapters/registry.py
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from social_publisher.adapters.platforms import Overflow, PlatformSpec, get_spec
from social_publisher.adapters.text import split_into_thread, truncate
from social_publisher.errors import ContentValidationError


@dataclass(frozen=True)
class MediaAttachment:
    """What an adapter needs to know about one uploaded file."""

    kind: str
    url: str
    state: str = "ready"
    image_format: Optional[str] = None
    converted_url: Optional[str] = None
    metadata: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_reference(cls, ref) -> "MediaAttachment":
        return cls(
            kind=ref.kind,
            url=ref.public_url,
            state=ref.state,
            image_format=(ref.media_metadata or {}).get("format"),
            converted_url=ref.converted_url,
            metadata=dict(ref.media_metadata or {}),
        )

    @property
    def is_webp(self) -> bool:
        return (self.image_format or "").upper() == "WEBP"


@dataclass
class PayloadUnit:
    platform: str
    position: int
    total: int
    text: str
    media: List[Dict[str, Any]] = field(default_factory=list)
    settings: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class AdaptTarget:
    connection_id: str
    platform: str


AdaptOutcome = Union[List[PayloadUnit], ContentValidationError]


def merge_settings(spec: PlatformSpec, supplied: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    name = spec.platform.value
    merged = dict(spec.default_settings)
    for key, value in (supplied or {}).items():
        if key not in spec.default_settings:
            raise ContentValidationError(name, f"unknown setting '{key}'")
        choices = spec.setting_choices.get(key)
        if choices and value not in choices:
            raise ContentValidationError(name, f"setting '{key}' must be one of {', '.join(map(str, choices))}")
        merged[key] = value
    return merged


def check_media_rules(spec: PlatformSpec, media: Sequence[MediaAttachment], has_text: bool) -> None:
    name = spec.platform.value
    videos = [m for m in media if m.kind == "video"]
    images = [m for m in media if m.kind == "image"]

    if videos and images:
        raise ContentValidationError(name, "a video cannot be combined with images")
    if len(videos) > 1:
        raise ContentValidationError(name, "only one video can be attached")
    if spec.video_only and not videos:
        raise ContentValidationError(name, "a video is required")
    if spec.media_required and not media:
        raise ContentValidationError(name, "media is required")
    if videos and not spec.allows_video:
        raise ContentValidationError(name, "videos are not supported")
    if images and not spec.accepts_images:
        raise ContentValidationError(name, "images are not supported")
    if len(images) > spec.max_images:
        raise ContentValidationError(name, f"at most {spec.max_images} images allowed, got {len(images)}")
    if not has_text and not media:
        raise ContentValidationError(name, "nothing to publish")


def _media_payload(spec: PlatformSpec, media: Sequence[MediaAttachment]) -> List[Dict[str, Any]]:
    items = []
    for m in media:
        url = m.url
        if spec.rejects_webp and m.is_webp and m.converted_url:
            url = m.converted_url
        items.append({"kind": m.kind, "url": url})
    return items


def _fit_text(spec: PlatformSpec, text: str, settings: Mapping[str, Any]) -> List[str]:
    if spec.overflow == Overflow.thread:
        return split_into_thread(text, spec.char_limit, numbered=bool(settings.get("thread_numbering")))
    return [truncate(text, spec.char_limit)]


def adapt(
    platform,
    content: str,
    media: Sequence[MediaAttachment] = (),
    settings: Optional[Mapping[str, Any]] = None,
) -> List[PayloadUnit]:
    """Turn canonical content into ordered payload units for one platform.

    Pure: raises ContentValidationError when the platform can't take the post.
    """
    spec = get_spec(platform)
    text = (content or "").strip()
    check_media_rules(spec, media, has_text=bool(text))
    merged = merge_settings(spec, settings)

    if spec.title_from_first_line and not merged.get("title"):
        first_line = text.splitlines()[0] if text else "Untitled"
        merged["title"] = truncate(first_line, spec.title_from_first_line)

    chunks = _fit_text(spec, text, merged) if text else [""]
    total = len(chunks)
    units = []
    for position, chunk in enumerate(chunks):
        units.append(PayloadUnit(
            platform=spec.platform.value,
            position=position,
            total=total,
            text=chunk,
            media=_media_payload(spec, media) if position == 0 else [],
            settings=merged,
        ))
    return units


def adapt_targets(
    targets: Sequence[AdaptTarget],
    content: str,
    media: Sequence[MediaAttachment] = (),
    settings_map: Optional[Mapping[str, Mapping[str, Any]]] = None,
) -> Dict[str, AdaptOutcome]:
    """Adapt for every target; one platform's rejection never affects another."""
    outcomes: Dict[str, AdaptOutcome] = {}
    for target in targets:
        try:
            outcomes[target.connection_id] = adapt(
                target.platform, content, media, (settings_map or {}).get(target.platform)
            )
        except ContentValidationError as exc:
            outcomes[target.connection_id] = exc
    return outcomes
