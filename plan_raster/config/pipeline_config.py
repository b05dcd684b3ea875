"""
Pipeline configuration for plan raster processing.

All options are resolved once when the pipeline is constructed; nothing is
patched or inspected at run time.
"""

from dataclasses import dataclass, field
from typing import Dict, Any, List, Optional, Tuple

from ..errors import ConfigurationError


COMPOSITE_MODES = ("erase", "reclassify")
DEDUP_STRATEGIES = ("origin", "iou")


@dataclass(frozen=True)
class CandidateRegion:
    """
    A relative rectangle searched for scale notation.

    Attributes:
        name: Identifier reported as ScaleResult.detected_in
        rect: (x, y, width, height) as fractions of the image size
        priority: Lower values are searched first
    """
    name: str
    rect: Tuple[float, float, float, float]
    priority: int = 0

    def __post_init__(self):
        """Validate the relative rectangle."""
        if len(self.rect) != 4:
            raise ConfigurationError(f"candidate region '{self.name}' needs 4 values, got {len(self.rect)}")
        x, y, w, h = self.rect
        if not all(0.0 <= v <= 1.0 for v in (x, y, w, h)):
            raise ConfigurationError(f"candidate region '{self.name}' must use fractions in [0, 1]: {self.rect}")
        if w <= 0 or h <= 0:
            raise ConfigurationError(f"candidate region '{self.name}' has empty size: {self.rect}")
        if x + w > 1.0 + 1e-9 or y + h > 1.0 + 1e-9:
            raise ConfigurationError(f"candidate region '{self.name}' extends past the image: {self.rect}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "name": self.name,
            "rect": {"x": self.rect[0], "y": self.rect[1], "width": self.rect[2], "height": self.rect[3]},
            "priority": self.priority,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CandidateRegion":
        """Create from dictionary. Accepts rect as a mapping or a 4-item list."""
        rect = data["rect"]
        if isinstance(rect, dict):
            rect = (rect["x"], rect["y"], rect["width"], rect["height"])
        return cls(
            name=data["name"],
            rect=tuple(float(v) for v in rect),
            priority=int(data.get("priority", 0)),
        )


@dataclass(frozen=True)
class AcceptedScale:
    """A known architectural scale, e.g. 1:50."""
    ratio: int

    @property
    def notation(self) -> str:
        return f"1:{self.ratio}"


DEFAULT_CANDIDATE_REGIONS: Tuple[CandidateRegion, ...] = (
    CandidateRegion("footer_right", (0.70, 0.90, 0.25, 0.08), priority=1),
    CandidateRegion("title_block", (0.60, 0.75, 0.40, 0.25), priority=2),
    CandidateRegion("footer_left", (0.0, 0.90, 0.30, 0.10), priority=3),
    CandidateRegion("header_right", (0.70, 0.0, 0.30, 0.10), priority=4),
)

# Ordered: the more specific prefixed notations are tried before the bare ratio
DEFAULT_SCALE_PATTERNS: Tuple[str, ...] = (
    r"(?:Ma(?:ß|ss)stab|M\.?)\s*1\s*:\s*(\d+)",
    r"Scale\s*1\s*:\s*(\d+)",
    r"1\s*:\s*(\d+)",
)

DEFAULT_ACCEPTED_SCALES: Tuple[int, ...] = (1, 2, 5, 10, 20, 25, 50, 100, 200, 250, 500, 1000)


@dataclass
class PipelineConfig:
    """
    Configuration for a plan raster job.

    Attributes:
        tile_size: Edge length of a tile in pixels (vision backend limit)
        overlap: Pixels shared between adjacent tiles
        footer_candidate_regions: Regions searched for scale notation, by priority
        scale_patterns: Ordered regular expressions, group 1 captures N of 1:N
        accepted_scales: Known architectural scale ratios
        sane_ratio_range: Inclusive ratio window accepted as pattern_fallback
        min_text_confidence: OCR confidence floor for scale text
        fallback_confidence: Confidence reported for pattern_fallback results
        default_ratio: Ratio used when no scale notation is found
        default_confidence: Confidence reported for the default result (<= 0.5)
        dedup_tolerance_px: Max origin distance (per axis) for duplicates
        dedup_strategy: "origin" (fixed pixel distance) or "iou"
        dedup_iou_threshold: Overlap ratio treated as duplicate by "iou"
        dark_luminance_threshold: Luminance below which a pixel is structural
        mid_luminance_upper: Upper bound of the patterned-structural band
        texture_radius: Neighbourhood radius for texture detection
        texture_variation_threshold: Luminance difference counted as variation
        texture_neighbor_count_min: Variations needed to confirm texture
        composite_mode: "erase" (targeted erasure) or "reclassify"
        erase_padding_px: Padding added around erased regions
        background_value: Fill value for background pixels
        max_tile_concurrency: Max in-flight tile inference calls
        per_tile_timeout_s: Timeout for a single tile inference call
        assumed_scan_dpi: Scan resolution; falls back to image metadata when None
        min_region_confidence: Detections below this confidence are dropped
    """
    tile_size: int = 672
    overlap: int = 64
    footer_candidate_regions: List[CandidateRegion] = field(
        default_factory=lambda: list(DEFAULT_CANDIDATE_REGIONS)
    )
    scale_patterns: List[str] = field(default_factory=lambda: list(DEFAULT_SCALE_PATTERNS))
    accepted_scales: List[int] = field(default_factory=lambda: list(DEFAULT_ACCEPTED_SCALES))
    sane_ratio_range: Tuple[int, int] = (5, 1000)
    min_text_confidence: float = 0.5
    fallback_confidence: float = 0.6
    default_ratio: int = 100
    default_confidence: float = 0.3
    dedup_tolerance_px: float = 10.0
    dedup_strategy: str = "origin"
    dedup_iou_threshold: float = 0.5
    dark_luminance_threshold: int = 50
    mid_luminance_upper: int = 200
    texture_radius: int = 3
    texture_variation_threshold: int = 30
    texture_neighbor_count_min: int = 5
    composite_mode: str = "erase"
    erase_padding_px: int = 4
    background_value: int = 255
    max_tile_concurrency: int = 4
    per_tile_timeout_s: float = 30.0
    assumed_scan_dpi: Optional[float] = None
    min_region_confidence: float = 0.0

    def __post_init__(self):
        """Validate configuration values."""
        self._validate()

    def _validate(self):
        """Validate all configuration values."""
        if self.tile_size <= 0:
            raise ConfigurationError(f"tile_size must be > 0, got {self.tile_size}")
        if not (0 < self.overlap < self.tile_size):
            raise ConfigurationError(
                f"overlap ({self.overlap}) must satisfy 0 < overlap < tile_size ({self.tile_size})"
            )

        # Normalize candidate regions coming from dicts (YAML/JSON)
        regions = [
            r if isinstance(r, CandidateRegion) else CandidateRegion.from_dict(r)
            for r in self.footer_candidate_regions
        ]
        self.footer_candidate_regions = sorted(regions, key=lambda r: r.priority)

        if not self.scale_patterns:
            raise ConfigurationError("scale_patterns must not be empty")
        if any(int(r) <= 0 for r in self.accepted_scales):
            raise ConfigurationError(f"accepted_scales must be positive, got {self.accepted_scales}")
        self.accepted_scales = sorted({int(r) for r in self.accepted_scales})

        low, high = self.sane_ratio_range
        if not (0 < low <= high):
            raise ConfigurationError(f"sane_ratio_range must satisfy 0 < low <= high, got {self.sane_ratio_range}")
        self.sane_ratio_range = (int(low), int(high))

        for name in ("min_text_confidence", "fallback_confidence", "dedup_iou_threshold", "min_region_confidence"):
            value = getattr(self, name)
            if not (0.0 <= value <= 1.0):
                raise ConfigurationError(f"{name} must be between 0.0 and 1.0, got {value}")
        if not (0.0 <= self.default_confidence <= 0.5):
            raise ConfigurationError(
                f"default_confidence must be between 0.0 and 0.5, got {self.default_confidence}"
            )
        if self.default_ratio <= 0:
            raise ConfigurationError(f"default_ratio must be > 0, got {self.default_ratio}")

        if self.dedup_tolerance_px < 0:
            raise ConfigurationError(f"dedup_tolerance_px must be >= 0, got {self.dedup_tolerance_px}")
        if self.dedup_strategy not in DEDUP_STRATEGIES:
            raise ConfigurationError(
                f"dedup_strategy must be one of {DEDUP_STRATEGIES}, got '{self.dedup_strategy}'"
            )
        if self.dedup_strategy == "iou" and self.dedup_iou_threshold <= 0:
            raise ConfigurationError("dedup_iou_threshold must be > 0 for the 'iou' strategy")

        if not (0 <= self.dark_luminance_threshold < self.mid_luminance_upper <= 255):
            raise ConfigurationError(
                "luminance thresholds must satisfy 0 <= dark_luminance_threshold "
                f"< mid_luminance_upper <= 255, got {self.dark_luminance_threshold}/{self.mid_luminance_upper}"
            )
        if self.texture_radius < 1:
            raise ConfigurationError(f"texture_radius must be >= 1, got {self.texture_radius}")
        if not (0 <= self.texture_variation_threshold <= 255):
            raise ConfigurationError(
                f"texture_variation_threshold must be 0-255, got {self.texture_variation_threshold}"
            )
        if self.texture_neighbor_count_min < 0:
            raise ConfigurationError(
                f"texture_neighbor_count_min must be >= 0, got {self.texture_neighbor_count_min}"
            )

        if self.composite_mode not in COMPOSITE_MODES:
            raise ConfigurationError(
                f"composite_mode must be one of {COMPOSITE_MODES}, got '{self.composite_mode}'"
            )
        if self.erase_padding_px < 0:
            raise ConfigurationError(f"erase_padding_px must be >= 0, got {self.erase_padding_px}")
        if not (0 <= self.background_value <= 255):
            raise ConfigurationError(f"background_value must be 0-255, got {self.background_value}")

        if self.max_tile_concurrency < 1:
            raise ConfigurationError(f"max_tile_concurrency must be >= 1, got {self.max_tile_concurrency}")
        if self.per_tile_timeout_s <= 0:
            raise ConfigurationError(f"per_tile_timeout_s must be > 0, got {self.per_tile_timeout_s}")
        if self.assumed_scan_dpi is not None and self.assumed_scan_dpi <= 0:
            raise ConfigurationError(f"assumed_scan_dpi must be > 0, got {self.assumed_scan_dpi}")

    @property
    def known_scales(self) -> List[AcceptedScale]:
        """Accepted scales, smallest ratio first."""
        return [AcceptedScale(r) for r in self.accepted_scales]

    @property
    def step(self) -> int:
        """Distance between adjacent tile origins."""
        return self.tile_size - self.overlap

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "tile_size": self.tile_size,
            "overlap": self.overlap,
            "footer_candidate_regions": [r.to_dict() for r in self.footer_candidate_regions],
            "scale_patterns": list(self.scale_patterns),
            "accepted_scales": list(self.accepted_scales),
            "sane_ratio_range": list(self.sane_ratio_range),
            "min_text_confidence": self.min_text_confidence,
            "fallback_confidence": self.fallback_confidence,
            "default_ratio": self.default_ratio,
            "default_confidence": self.default_confidence,
            "dedup_tolerance_px": self.dedup_tolerance_px,
            "dedup_strategy": self.dedup_strategy,
            "dedup_iou_threshold": self.dedup_iou_threshold,
            "dark_luminance_threshold": self.dark_luminance_threshold,
            "mid_luminance_upper": self.mid_luminance_upper,
            "texture_radius": self.texture_radius,
            "texture_variation_threshold": self.texture_variation_threshold,
            "texture_neighbor_count_min": self.texture_neighbor_count_min,
            "composite_mode": self.composite_mode,
            "erase_padding_px": self.erase_padding_px,
            "background_value": self.background_value,
            "max_tile_concurrency": self.max_tile_concurrency,
            "per_tile_timeout_s": self.per_tile_timeout_s,
            "assumed_scan_dpi": self.assumed_scan_dpi,
            "min_region_confidence": self.min_region_confidence,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PipelineConfig":
        """Create from dictionary (e.g., from YAML config). Unknown keys are rejected."""
        known = set(cls.__dataclass_fields__)
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigurationError(f"unknown configuration keys: {', '.join(unknown)}")

        kwargs = dict(data)
        if "sane_ratio_range" in kwargs:
            kwargs["sane_ratio_range"] = tuple(kwargs["sane_ratio_range"])
        if "footer_candidate_regions" in kwargs:
            kwargs["footer_candidate_regions"] = [
                CandidateRegion.from_dict(r) if isinstance(r, dict) else r
                for r in kwargs["footer_candidate_regions"]
            ]
        return cls(**kwargs)

    @classmethod
    def from_yaml(cls, yaml_path: str) -> "PipelineConfig":
        """Load configuration from YAML file."""
        import yaml

        try:
            with open(yaml_path, "r") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(f"cannot read config file {yaml_path}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigurationError(f"config file {yaml_path} must contain a mapping")
        return cls.from_dict(data.get("pipeline", data))

    @classmethod
    def default(cls) -> "PipelineConfig":
        """Create default configuration."""
        return cls()
