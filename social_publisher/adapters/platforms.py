# social_publisher/adapters/platforms.py
"""Closed registry of supported platforms.

Each platform is one PlatformSpec row. Adding a platform means adding an enum
member and a row here; the adapter code never branches on platform names.
"""
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple


class Platform(str, Enum):
    x = "x"
    threads = "threads"
    bluesky = "bluesky"
    mastodon = "mastodon"
    linkedin = "linkedin"
    facebook = "facebook"
    instagram = "instagram"
    pinterest = "pinterest"
    tiktok = "tiktok"
    youtube = "youtube"


class Overflow(str, Enum):
    thread = "thread"
    truncate = "truncate"


@dataclass(frozen=True)
class PlatformSpec:
    platform: Platform
    char_limit: int
    overflow: Overflow = Overflow.truncate
    media_required: bool = False
    max_images: int = 4
    allows_video: bool = True
    video_only: bool = False
    rejects_webp: bool = False
    min_video_fps: Optional[float] = None
    max_video_duration: Optional[float] = None
    aspect_ratio_range: Optional[Tuple[float, float]] = None
    # fills an empty "title" setting from the first line of content, capped at this length
    title_from_first_line: Optional[int] = None
    default_settings: Mapping[str, Any] = field(default_factory=dict)
    setting_choices: Mapping[str, Tuple[Any, ...]] = field(default_factory=dict)

    @property
    def accepts_images(self) -> bool:
        return self.max_images > 0 and not self.video_only

    def describe(self) -> Dict[str, Any]:
        return {
            "platform": self.platform.value,
            "char_limit": self.char_limit,
            "overflow": self.overflow.value,
            "media_required": self.media_required,
            "max_images": self.max_images,
            "allows_video": self.allows_video,
            "video_only": self.video_only,
            "rejects_webp": self.rejects_webp,
            "min_video_fps": self.min_video_fps,
            "max_video_duration": self.max_video_duration,
            "aspect_ratio_range": list(self.aspect_ratio_range) if self.aspect_ratio_range else None,
            "title_from_first_line": self.title_from_first_line,
            "default_settings": dict(self.default_settings),
            "setting_choices": {k: list(v) for k, v in self.setting_choices.items()},
        }


_SPECS = (
    PlatformSpec(
        Platform.x,
        char_limit=280,
        overflow=Overflow.thread,
        max_images=4,
        max_video_duration=140,
        default_settings={"thread_numbering": True, "reply_settings": "everyone"},
        setting_choices={"reply_settings": ("everyone", "following", "mentionedUsers")},
    ),
    PlatformSpec(
        Platform.threads,
        char_limit=500,
        overflow=Overflow.thread,
        max_images=10,
        max_video_duration=300,
        default_settings={"thread_numbering": False, "reply_control": "everyone"},
        setting_choices={"reply_control": ("everyone", "accounts_you_follow", "mentioned_only")},
    ),
    PlatformSpec(
        Platform.bluesky,
        char_limit=300,
        overflow=Overflow.thread,
        max_images=4,
        max_video_duration=60,
        default_settings={"thread_numbering": False, "langs": ["en"]},
    ),
    PlatformSpec(
        Platform.mastodon,
        char_limit=500,
        overflow=Overflow.thread,
        max_images=4,
        default_settings={"thread_numbering": False, "visibility": "public", "spoiler_text": ""},
        setting_choices={"visibility": ("public", "unlisted", "private", "direct")},
    ),
    PlatformSpec(
        Platform.linkedin,
        char_limit=3000,
        max_images=9,
        rejects_webp=True,
        max_video_duration=600,
        default_settings={"visibility": "PUBLIC"},
        setting_choices={"visibility": ("PUBLIC", "CONNECTIONS")},
    ),
    PlatformSpec(
        Platform.facebook,
        char_limit=63206,
        max_images=10,
        default_settings={"link": None},
    ),
    PlatformSpec(
        Platform.instagram,
        char_limit=2200,
        media_required=True,
        max_images=10,
        rejects_webp=True,
        min_video_fps=23,
        max_video_duration=900,
        aspect_ratio_range=(0.5625, 1.91),
        default_settings={"post_type": "feed", "share_to_feed": True},
        setting_choices={"post_type": ("feed", "reel", "story")},
    ),
    PlatformSpec(
        Platform.pinterest,
        char_limit=500,
        media_required=True,
        max_images=1,
        rejects_webp=True,
        default_settings={"board_id": None, "title": None, "link": None},
    ),
    PlatformSpec(
        Platform.tiktok,
        char_limit=2200,
        media_required=True,
        max_images=0,
        video_only=True,
        min_video_fps=23,
        max_video_duration=600,
        default_settings={"privacy_level": "PUBLIC_TO_EVERYONE", "disable_comment": False},
        setting_choices={"privacy_level": ("PUBLIC_TO_EVERYONE", "MUTUAL_FOLLOW_FRIENDS", "SELF_ONLY")},
    ),
    PlatformSpec(
        Platform.youtube,
        char_limit=5000,
        media_required=True,
        max_images=0,
        video_only=True,
        title_from_first_line=100,
        default_settings={"title": None, "privacy_status": "public", "tags": []},
        setting_choices={"privacy_status": ("public", "private", "unlisted")},
    ),
)

REGISTRY: Mapping[Platform, PlatformSpec] = MappingProxyType({spec.platform: spec for spec in _SPECS})


def get_spec(platform) -> PlatformSpec:
    return REGISTRY[Platform(platform)]


def is_supported(name: str) -> bool:
    try:
        Platform(name)
    except ValueError:
        return False
    return True
