"""Quality ladder: the static tier table and the planner that selects from it."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from types import MappingProxyType
from typing import Any, Mapping

BASE_TIER = "720p"


@dataclass(frozen=True)
class TierConfig:
    """Encode profile for one rung of the ladder."""

    name: str
    label: str
    resolution: str
    height: int
    scale_filter: str
    preset: str
    crf: int
    # Estimated, only used to order the master playlist
    bandwidth: int
    timeout_seconds: int
    # 0 keeps every segment in the playlist
    segment_list_size: int = 0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TierConfig:
        """Create from the camelCase wire form, filling gaps from the static table."""
        name = data["name"]
        defaults = TIER_TABLE.get(name)
        fallback = asdict(defaults) if defaults else {}

        def pick(camel: str, snake: str, default: Any = None) -> Any:
            if camel in data and data[camel] is not None:
                return data[camel]
            if snake in data and data[snake] is not None:
                return data[snake]
            return fallback.get(snake, default)

        return cls(
            name=name,
            label=pick("label", "label", name),
            resolution=pick("resolution", "resolution"),
            height=int(pick("height", "height", 0)),
            scale_filter=pick("scaleFilter", "scale_filter"),
            preset=pick("preset", "preset"),
            crf=int(pick("crf", "crf")),
            bandwidth=int(pick("bandwidth", "bandwidth")),
            timeout_seconds=int(pick("timeoutSeconds", "timeout_seconds", 600)),
            segment_list_size=int(pick("segmentListSize", "segment_list_size", 0)),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary (camelCase for Firestore and queue payloads)."""
        return {
            "name": self.name,
            "label": self.label,
            "resolution": self.resolution,
            "height": self.height,
            "scaleFilter": self.scale_filter,
            "preset": self.preset,
            "crf": self.crf,
            "bandwidth": self.bandwidth,
            "timeoutSeconds": self.timeout_seconds,
            "segmentListSize": self.segment_list_size,
        }


TIER_TABLE: Mapping[str, TierConfig] = MappingProxyType({
    "720p": TierConfig(
        name="720p",
        label="HD",
        resolution="1280x720",
        height=720,
        scale_filter="scale=w=min(iw\\,1280):h=-2",
        preset="veryfast",
        crf=23,
        bandwidth=2_800_000,
        timeout_seconds=300,
        segment_list_size=10,
    ),
    "1080p": TierConfig(
        name="1080p",
        label="Full HD",
        resolution="1920x1080",
        height=1080,
        scale_filter="scale=w=min(iw\\,1920):h=-2",
        preset="fast",
        crf=21,
        bandwidth=5_000_000,
        timeout_seconds=600,
    ),
    "2160p": TierConfig(
        name="2160p",
        label="4K",
        resolution="3840x2160",
        height=2160,
        scale_filter="scale=w=min(iw\\,3840):h=-2",
        preset="medium",
        crf=20,
        bandwidth=14_000_000,
        timeout_seconds=1200,
    ),
})

# Planning order; the first entry is mandatory
TIER_ORDER = ("720p", "1080p", "2160p")


def get_tier(name: str) -> TierConfig:
    """Look up a tier by name."""
    try:
        return TIER_TABLE[name]
    except KeyError:
        raise ValueError(f"Unknown quality tier: {name}") from None


def plan_ladder(width: int | None, height: int | None) -> list[TierConfig]:
    """
    Decide which tiers to produce for a source.

    Each rule is checked on its own: 1080p needs width >= 1920 or
    height >= 1080, 2160p needs width >= 3840 or height >= 2160. 720p is
    always planned. Unknown dimensions plan the baseline only.
    """
    width = width or 0
    height = height or 0

    ladder = [TIER_TABLE[BASE_TIER]]
    if width >= 1920 or height >= 1080:
        ladder.append(TIER_TABLE["1080p"])
    if width >= 3840 or height >= 2160:
        ladder.append(TIER_TABLE["2160p"])
    return ladder
