# tests/test_adapters.py
import pytest

from social_publisher.adapters.platforms import REGISTRY, Platform, get_spec, is_supported
from social_publisher.adapters.registry import AdaptTarget, MediaAttachment, adapt, adapt_targets, merge_settings
from social_publisher.errors import ContentValidationError

IMAGE = MediaAttachment(kind="image", url="https://cdn.test/a.png", image_format="PNG")
WEBP = MediaAttachment(
    kind="image",
    url="https://cdn.test/b.webp",
    image_format="WEBP",
    converted_url="https://cdn.test/b.webp.jpg",
)
VIDEO = MediaAttachment(kind="video", url="https://cdn.test/v.mp4", metadata={"fps": 30, "duration": 12})


def test_registry_covers_every_platform():
    assert set(REGISTRY) == set(Platform)
    assert is_supported("bluesky")
    assert not is_supported("myspace")


def test_x_long_text_becomes_numbered_thread_with_media_on_first_unit():
    text = " ".join(f"Point {i} matters a lot for this launch." for i in range(30))
    units = adapt("x", text, [IMAGE])
    assert len(units) > 1
    assert all(len(u.text) <= 280 for u in units)
    assert units[0].text.endswith(f"(1/{len(units)})")
    assert units[0].media == [{"kind": "image", "url": IMAGE.url}]
    assert all(u.media == [] for u in units[1:])
    assert [u.position for u in units] == list(range(len(units)))
    assert all(u.total == len(units) for u in units)


def test_thread_numbering_can_be_turned_off():
    text = " ".join(f"Point {i} matters a lot for this launch." for i in range(30))
    units = adapt("x", text, settings={"thread_numbering": False})
    assert "(1/" not in units[0].text


def test_linkedin_truncates_instead_of_threading():
    text = "word " * 1000
    units = adapt("linkedin", text)
    assert len(units) == 1
    assert len(units[0].text) <= 3000


def test_webp_is_swapped_for_jpeg_on_platforms_that_reject_it():
    assert adapt("linkedin", "hi", [WEBP])[0].media[0]["url"] == WEBP.converted_url
    assert adapt("facebook", "hi", [WEBP])[0].media[0]["url"] == WEBP.url


@pytest.mark.parametrize("platform", ["tiktok", "youtube"])
def test_video_only_platforms_reject_text_posts(platform):
    with pytest.raises(ContentValidationError) as exc:
        adapt(platform, "just words")
    assert exc.value.platform == platform


def test_instagram_requires_media():
    with pytest.raises(ContentValidationError):
        adapt("instagram", "caption only")


def test_pinterest_takes_a_single_image():
    with pytest.raises(ContentValidationError):
        adapt("pinterest", "pin", [IMAGE, IMAGE])


def test_video_and_images_do_not_mix():
    with pytest.raises(ContentValidationError):
        adapt("facebook", "mixed", [IMAGE, VIDEO])


def test_youtube_title_defaults_to_first_line():
    units = adapt("youtube", "My trip to Lisbon\nFull description here", [VIDEO])
    assert units[0].settings["title"] == "My trip to Lisbon"
    assert units[0].settings["privacy_status"] == "public"


def test_title_default_comes_from_spec_row():
    titled = [spec.platform for spec in REGISTRY.values() if spec.title_from_first_line]
    assert titled == [Platform.youtube]
    units = adapt("youtube", "x" * 150, [VIDEO])
    assert len(units[0].settings["title"]) <= get_spec("youtube").title_from_first_line
    units = adapt("youtube", "Body", [VIDEO], {"title": "Chosen"})
    assert units[0].settings["title"] == "Chosen"


def test_unknown_setting_is_rejected():
    with pytest.raises(ContentValidationError):
        merge_settings(get_spec("mastodon"), {"colour": "blue"})


def test_setting_choice_is_checked():
    with pytest.raises(ContentValidationError):
        merge_settings(get_spec("mastodon"), {"visibility": "everyone"})
    assert merge_settings(get_spec("mastodon"), {"visibility": "unlisted"})["visibility"] == "unlisted"


def test_adapt_targets_isolates_rejections():
    outcomes = adapt_targets(
        [AdaptTarget("c1", "x"), AdaptTarget("c2", "tiktok")],
        "hello world",
    )
    assert isinstance(outcomes["c1"], list)
    assert isinstance(outcomes["c2"], ContentValidationError)


def test_describe_is_json_friendly():
    described = get_spec("instagram").describe()
    assert described["platform"] == "instagram"
    assert described["aspect_ratio_range"] == [0.5625, 1.91]
    assert described["media_required"] is True
