"""
Command-line interface for face2head.

This module provides the main entry point for the CLI tool.
"""

import logging
import sys
from typing import Optional

from .config import create_argument_parser, Config
from .exporter import ExportError
from .landmarks import FaceLandmarkIngest, NoFaceDetectedError
from .pipeline import HeadPipeline
from .texture import load_image


def main(argv: Optional[list] = None) -> int:
    """
    Main entry point for CLI.

    Args:
        argv: Command-line arguments (None = sys.argv)

    Returns:
        Exit code (0 = success, non-zero = error)
    """
    # Parse arguments
    parser = create_argument_parser()
    args = parser.parse_args(argv)

    # Handle --save-config
    if args.save_config:
        template = Config.generate_default_config_template()
        with open(args.save_config, 'w') as f:
            f.write(template)
        print(f"Default configuration saved to: {args.save_config}")
        print(f"Edit this file and use with: face2head --config {args.save_config}")
        return 0

    # Create config
    try:
        config = Config.from_args(args)
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        print(f"\nUse --help for usage information or --save-config to generate a template.", file=sys.stderr)
        return 1

    # Configure logging
    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(name)s: %(message)s")

    # Print banner
    if args.verbose:
        print("=" * 60)
        print("face2head - Animatable Head Asset Builder")
        print("=" * 60)
        print(f"Image: {config.image_file}")
        print(f"Landmarks: {config.landmarks_file}")
        print(f"Output: {config.export.output_dir}")
        print(f"Texture: {config.texture.size}x{config.texture.size}")
        print(f"Head: {config.head.layers} layers, {config.head.falloff} falloff")
        print("=" * 60)

    try:
        # Load inputs
        if args.verbose:
            print("\n[1/3] Loading inputs...")

        detection = FaceLandmarkIngest.from_json(config.landmarks_file)
        image = load_image(config.image_file)

        if args.verbose:
            print(f"  Image: {image.shape[1]}x{image.shape[0]}")
            print(f"  Landmarks: {detection.landmarks.shape}, "
                  f"{len(detection.blendshapes)} blendshape scores, "
                  f"pose {'present' if detection.pose_matrix is not None else 'absent'}")

        # Build asset
        if args.verbose:
            print("\n[2/3] Building head asset...")

        pipeline = HeadPipeline.from_config(config)
        bundle = pipeline.run(image, detection)

        if args.verbose:
            asset = bundle.asset
            tone = asset.skin_tone
            print(f"  Mesh: {asset.vertex_count} vertices, {asset.triangle_count} triangles")
            print(f"  Morph targets: {len(asset.morph_target_names)}")
            print(f"  Skin tone: ({tone.r:.3f}, {tone.g:.3f}, {tone.b:.3f})"
                  f"{'' if tone.sampled else ' (default)'}")

        # Export
        if args.verbose:
            print("\n[3/3] Exporting...")

        saved_paths = pipeline.export(
            config.export.output_dir,
            name=config.export.name,
            morph_convention=config.export.morph_convention,
            preview_ply=config.export.preview_ply
        )

        if args.verbose:
            for path in saved_paths:
                print(f"  → {path}")
            print("\n" + "=" * 60)
            print("✓ Complete!")
            print("=" * 60)

        return 0

    except NoFaceDetectedError as e:
        print(f"Error: {e}. No asset was created.", file=sys.stderr)
        return 1
    except FileNotFoundError as e:
        print(f"Error: File not found: {e}", file=sys.stderr)
        return 1
    except ValueError as e:
        print(f"Error: Invalid input: {e}", file=sys.stderr)
        return 1
    except ExportError as e:
        print(f"Error: Export failed: {e}", file=sys.stderr)
        return 1
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        if args.verbose:
            import traceback
            traceback.print_exc()
        return 1


if __name__ == "__main__":
    sys.exit(main())
