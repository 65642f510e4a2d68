"""
Configuration management for face2head.

Handles:
- Command-line argument parsing
- YAML config file loading
- Configuration validation
- Merging configs with defaults

Every tuning constant of the pipeline lives in one of the sections below
with its documented default.
"""

from dataclasses import dataclass, field
from typing import Optional, Tuple
import argparse

from .head import FALLOFF_CURVES
from .texture import DEFAULT_SAMPLE_POINTS, SKIN_BACKGROUND_RGB

MORPH_CONVENTIONS = ("relative", "absolute")


@dataclass
class FrameConfig:
    """Bounding frame configuration."""
    padding: float = 0.2          # Crop margin, fraction of the larger extent
    depth_aspect: float = 2.0     # depth_scale = max(sx, sy) * depth_aspect
    min_extent: float = 1e-6      # Fallback for zero-width/height landmark sets


@dataclass
class TextureConfig:
    """Texture extraction configuration."""
    size: int = 1024
    contrast: float = 1.1
    background: Tuple[int, int, int] = SKIN_BACKGROUND_RGB


@dataclass
class SkinToneConfig:
    """Skin-tone sampling configuration."""
    sample_points: Tuple[Tuple[float, float], ...] = DEFAULT_SAMPLE_POINTS
    patch_size: int = 20


@dataclass
class HeadConfig:
    """Back-of-head extension configuration."""
    layers: int = 6
    start_depth: float = 0.4
    max_depth: float = 1.4
    min_scale: float = 0.45
    max_lift: float = 0.3
    apex_offset: float = 0.15
    apex_lift: float = 0.1
    falloff: str = "cosine"  # "cosine" or "linear"


@dataclass
class MorphConfig:
    """Morph target configuration."""
    intensity: float = 0.1


@dataclass
class BlendshapeConfig:
    """Blendshape coefficient backfill configuration."""
    heuristics: bool = True
    jaw_gain: float = 5.0
    smile_lift_gain: float = 10.0
    smile_width_gain: float = 4.0
    brow_gain: float = 8.0
    blink_gain: float = 1.0


@dataclass
class PoseConfig:
    """Detector pose configuration."""
    enabled: bool = True
    include_translation: bool = False


@dataclass
class ExportConfig:
    """Export configuration."""
    output_dir: str = "./output"
    name: str = "head"
    morph_convention: str = "relative"  # "relative" (glTF) or "absolute"
    preview_ply: bool = True


@dataclass
class Config:
    """Complete configuration."""
    image_file: str
    landmarks_file: str
    frame: FrameConfig = field(default_factory=FrameConfig)
    texture: TextureConfig = field(default_factory=TextureConfig)
    skin_tone: SkinToneConfig = field(default_factory=SkinToneConfig)
    head: HeadConfig = field(default_factory=HeadConfig)
    morph: MorphConfig = field(default_factory=MorphConfig)
    blendshapes: BlendshapeConfig = field(default_factory=BlendshapeConfig)
    pose: PoseConfig = field(default_factory=PoseConfig)
    export: ExportConfig = field(default_factory=ExportConfig)

    def validate(self) -> None:
        """
        Check option values that are not validated by the components.

        Raises:
            ValueError: On an invalid option
        """
        if self.head.falloff not in FALLOFF_CURVES:
            raise ValueError(
                f"Invalid falloff '{self.head.falloff}'. Choose from {FALLOFF_CURVES}"
            )
        if self.export.morph_convention not in MORPH_CONVENTIONS:
            raise ValueError(
                f"Invalid morph convention '{self.export.morph_convention}'. "
                f"Choose from {MORPH_CONVENTIONS}"
            )
        if self.texture.size <= 0:
            raise ValueError(f"Texture size must be positive, got {self.texture.size}")
        if self.frame.padding < 0:
            raise ValueError(f"Frame padding must be >= 0, got {self.frame.padding}")

    @classmethod
    def from_args(cls, args: argparse.Namespace) -> "Config":
        """
        Create config from parsed command-line arguments.

        Loads config file if specified, then applies command-line overrides.

        Args:
            args: Parsed arguments from argparse

        Returns:
            Config instance

        Raises:
            ValueError: If neither config file nor required args are provided
        """
        if args.config:
            config = cls.from_yaml(
                args.config,
                image_file_override=args.image,
                landmarks_file_override=args.landmarks
            )
        else:
            if not args.image or not args.landmarks:
                raise ValueError(
                    "image and landmarks files must be specified "
                    "(positional arguments or in config file)"
                )
            if not args.output_dir:
                raise ValueError("--output-dir must be specified (or in config file)")

            config = cls(
                image_file=args.image,
                landmarks_file=args.landmarks,
                export=ExportConfig(output_dir=args.output_dir)
            )

        # Apply command-line overrides
        if args.image:
            config.image_file = args.image
        if args.landmarks:
            config.landmarks_file = args.landmarks
        if args.output_dir:
            config.export.output_dir = args.output_dir
        if args.name:
            config.export.name = args.name

        if args.texture_size is not None:
            config.texture.size = args.texture_size
        if args.layers is not None:
            config.head.layers = args.layers
        if args.falloff:
            config.head.falloff = args.falloff
        if args.intensity is not None:
            config.morph.intensity = args.intensity
        if args.no_heuristics:
            config.blendshapes.heuristics = False
        if args.no_pose:
            config.pose.enabled = False
        if args.include_translation:
            config.pose.include_translation = True
        if args.morph_convention:
            config.export.morph_convention = args.morph_convention
        if args.no_ply:
            config.export.preview_ply = False

        config.validate()
        return config

    @classmethod
    def from_yaml(
        cls,
        filepath: str,
        image_file_override: Optional[str] = None,
        landmarks_file_override: Optional[str] = None
    ) -> "Config":
        """
        Load config from YAML file.

        Args:
            filepath: Path to YAML config file
            image_file_override: Override image file from command line
            landmarks_file_override: Override landmarks file from command line

        Returns:
            Config instance
        """
        try:
            import yaml
        except ImportError:
            raise ImportError(
                "PyYAML is required for config files. "
                "Install with: pip install pyyaml"
            )

        with open(filepath, 'r') as f:
            data = yaml.safe_load(f) or {}

        image_file = image_file_override or data.get('image_file', '')
        landmarks_file = landmarks_file_override or data.get('landmarks_file', '')
        if not image_file or not landmarks_file:
            raise ValueError(
                "image_file and landmarks_file must be specified in config or command line"
            )

        frame_data = data.get('frame', {})
        frame = FrameConfig(
            padding=frame_data.get('padding', 0.2),
            depth_aspect=frame_data.get('depth_aspect', 2.0),
            min_extent=frame_data.get('min_extent', 1e-6)
        )

        texture_data = data.get('texture', {})
        texture = TextureConfig(
            size=texture_data.get('size', 1024),
            contrast=texture_data.get('contrast', 1.1),
            background=tuple(texture_data.get('background', SKIN_BACKGROUND_RGB))
        )

        skin_data = data.get('skin_tone', {})
        skin_tone = SkinToneConfig(
            sample_points=tuple(
                tuple(point) for point in skin_data.get('sample_points', DEFAULT_SAMPLE_POINTS)
            ),
            patch_size=skin_data.get('patch_size', 20)
        )

        head_data = data.get('head', {})
        head = HeadConfig(
            layers=head_data.get('layers', 6),
            start_depth=head_data.get('start_depth', 0.4),
            max_depth=head_data.get('max_depth', 1.4),
            min_scale=head_data.get('min_scale', 0.45),
            max_lift=head_data.get('max_lift', 0.3),
            apex_offset=head_data.get('apex_offset', 0.15),
            apex_lift=head_data.get('apex_lift', 0.1),
            falloff=head_data.get('falloff', 'cosine')
        )

        morph_data = data.get('morph', {})
        morph = MorphConfig(intensity=morph_data.get('intensity', 0.1))

        blend_data = data.get('blendshapes', {})
        blendshapes = BlendshapeConfig(
            heuristics=blend_data.get('heuristics', True),
            jaw_gain=blend_data.get('jaw_gain', 5.0),
            smile_lift_gain=blend_data.get('smile_lift_gain', 10.0),
            smile_width_gain=blend_data.get('smile_width_gain', 4.0),
            brow_gain=blend_data.get('brow_gain', 8.0),
            blink_gain=blend_data.get('blink_gain', 1.0)
        )

        pose_data = data.get('pose', {})
        pose = PoseConfig(
            enabled=pose_data.get('enabled', True),
            include_translation=pose_data.get('include_translation', False)
        )

        export_data = data.get('export', {})
        export = ExportConfig(
            output_dir=export_data.get('output_dir', './output'),
            name=export_data.get('name', 'head'),
            morph_convention=export_data.get('morph_convention', 'relative'),
            preview_ply=export_data.get('preview_ply', True)
        )

        config = cls(
            image_file=image_file,
            landmarks_file=landmarks_file,
            frame=frame,
            texture=texture,
            skin_tone=skin_tone,
            head=head,
            morph=morph,
            blendshapes=blendshapes,
            pose=pose,
            export=export
        )
        config.validate()
        return config

    def to_yaml(self, filepath: str) -> None:
        """
        Save config to YAML file.

        Args:
            filepath: Path to save YAML config file
        """
        try:
            import yaml
        except ImportError:
            raise ImportError(
                "PyYAML is required for config files. "
                "Install with: pip install pyyaml"
            )

        data = {
            'image_file': self.image_file,
            'landmarks_file': self.landmarks_file,
            'frame': {
                'padding': self.frame.padding,
                'depth_aspect': self.frame.depth_aspect,
                'min_extent': self.frame.min_extent
            },
            'texture': {
                'size': self.texture.size,
                'contrast': self.texture.contrast,
                'background': list(self.texture.background)
            },
            'skin_tone': {
                'sample_points': [list(point) for point in self.skin_tone.sample_points],
                'patch_size': self.skin_tone.patch_size
            },
            'head': {
                'layers': self.head.layers,
                'start_depth': self.head.start_depth,
                'max_depth': self.head.max_depth,
                'min_scale': self.head.min_scale,
                'max_lift': self.head.max_lift,
                'apex_offset': self.head.apex_offset,
                'apex_lift': self.head.apex_lift,
                'falloff': self.head.falloff
            },
            'morph': {
                'intensity': self.morph.intensity
            },
            'blendshapes': {
                'heuristics': self.blendshapes.heuristics,
                'jaw_gain': self.blendshapes.jaw_gain,
                'smile_lift_gain': self.blendshapes.smile_lift_gain,
                'smile_width_gain': self.blendshapes.smile_width_gain,
                'brow_gain': self.blendshapes.brow_gain,
                'blink_gain': self.blendshapes.blink_gain
            },
            'pose': {
                'enabled': self.pose.enabled,
                'include_translation': self.pose.include_translation
            },
            'export': {
                'output_dir': self.export.output_dir,
                'name': self.export.name,
                'morph_convention': self.export.morph_convention,
                'preview_ply': self.export.preview_ply
            }
        }

        with open(filepath, 'w') as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)

    @staticmethod
    def generate_default_config_template() -> str:
        """
        Generate a default configuration template with comments.

        Returns:
            YAML string with comments explaining each option
        """
        return """# face2head Configuration File
#
# This file configures the landmarks-to-head asset pipeline.
# Command-line arguments override values specified here.

# Source photo (required)
image_file: "path/to/photo.png"

# Detector output written by tools/extract_face_landmarks.py (required)
landmarks_file: "path/to/landmarks.json"

# Bounding frame shared by geometry, texture crop and UVs
frame:
  # Crop margin around the face, as a fraction of the larger extent
  padding: 0.2

  # Depth divisor relative to the larger x/y extent
  depth_aspect: 2.0

  # Replacement extent for degenerate (zero-size) landmark sets
  min_extent: 1.0e-6

# Face texture extraction
texture:
  # Output texture side in pixels
  size: 1024

  # Contrast factor around mid-gray (1.0 = unchanged)
  contrast: 1.1

  # RGB fill for crop areas outside the photo
  background: [245, 230, 211]

# Skin tone sampling (used to color the back of the head)
skin_tone:
  # Patch centers as fractions of the texture size
  sample_points: [[0.5, 0.16], [0.28, 0.58], [0.72, 0.58]]

  # Patch side in pixels
  patch_size: 20

# Back-of-head extension
head:
  # Number of rings swept behind the face
  layers: 6

  # Depth of the first and last ring (model units, face spans [-1, 1])
  start_depth: 0.4
  max_depth: 1.4

  # Lateral scale of the last ring
  min_scale: 0.45

  # Upward lift of the top of the last ring
  max_lift: 0.3

  # Apex distance behind / above the last ring
  apex_offset: 0.15
  apex_lift: 0.1

  # Profile of the sweep: cosine (ellipsoid-like) or linear
  falloff: "cosine"

# Morph targets (52 ARKit channels)
morph:
  # Multiplier applied to every rule displacement
  intensity: 0.1

# Blendshape coefficients
blendshapes:
  # Backfill empty detector channels from landmark geometry
  heuristics: true
  jaw_gain: 5.0
  smile_lift_gain: 10.0
  smile_width_gain: 4.0
  brow_gain: 8.0
  blink_gain: 1.0

# Detector pose (facial transformation matrix)
pose:
  # Apply the pose to the asset when the detector provides one
  enabled: true

  # Also apply the translation (rotation only by default)
  include_translation: false

# Export configuration
export:
  # Output directory for the asset bundle
  output_dir: "./output"

  # Base name of the exported files
  name: "head"

  # Morph target convention: relative (glTF deltas) or absolute
  morph_convention: "relative"

  # Also write a vertex-colored PLY preview of the base mesh
  preview_ply: true
"""


def create_argument_parser() -> argparse.ArgumentParser:
    """
    Create command-line argument parser.

    Returns:
        Configured ArgumentParser
    """
    parser = argparse.ArgumentParser(
        prog="face2head",
        description="Build an animatable 3D head asset (mesh, UVs, texture, 52 ARKit morph targets) from a photo and its detected face landmarks",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
        epilog="Configuration file (YAML) can be used to set all options. Command-line arguments override config file values."
    )

    # Config file
    parser.add_argument(
        "--config", "-c",
        help="Path to YAML configuration file"
    )

    # Input/output
    parser.add_argument(
        "image",
        nargs='?',
        help="Path to the source photo (PNG/JPG)"
    )
    parser.add_argument(
        "landmarks",
        nargs='?',
        help="Path to detector JSON (see tools/extract_face_landmarks.py)"
    )
    parser.add_argument(
        "--output-dir", "-o",
        help="Directory for the exported asset bundle"
    )
    parser.add_argument(
        "--name",
        help="Base name of the exported files"
    )

    # Generate default config
    parser.add_argument(
        "--save-config",
        metavar="PATH",
        help="Save default configuration to YAML file and exit"
    )

    # Geometry options
    geometry_group = parser.add_argument_group("Geometry Options")
    geometry_group.add_argument(
        "--texture-size",
        type=int,
        metavar="PIXELS",
        help="Side of the square face texture"
    )
    geometry_group.add_argument(
        "--layers",
        type=int,
        metavar="N",
        help="Number of rings in the back-of-head extension"
    )
    geometry_group.add_argument(
        "--falloff",
        choices=list(FALLOFF_CURVES),
        help="Back-of-head profile"
    )

    # Animation options
    animation_group = parser.add_argument_group("Animation Options")
    animation_group.add_argument(
        "--intensity",
        type=float,
        help="Morph target displacement multiplier"
    )
    animation_group.add_argument(
        "--no-heuristics",
        action="store_true",
        help="Use detector blendshape scores only (no landmark backfill)"
    )
    animation_group.add_argument(
        "--no-pose",
        action="store_true",
        help="Ignore the detector's transformation matrix"
    )
    animation_group.add_argument(
        "--include-translation",
        action="store_true",
        help="Apply the pose translation as well as the rotation"
    )

    # Export options
    export_group = parser.add_argument_group("Export Options")
    export_group.add_argument(
        "--morph-convention",
        choices=list(MORPH_CONVENTIONS),
        help="Store morph targets as deltas (relative) or positions (absolute)"
    )
    export_group.add_argument(
        "--no-ply",
        action="store_true",
        help="Skip the PLY preview mesh"
    )

    # Other options
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Verbose output"
    )

    return parser
