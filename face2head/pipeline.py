"""
High-level pipeline orchestrating all components.

This module provides the HeadPipeline class which ties together:
- Landmark ingestion
- Bounding frame, texture extraction and skin-tone sampling
- Back-of-head synthesis and morph target synthesis
- Asset assembly and export

This is the main API for users of the library.
"""

import logging
from pathlib import Path
from typing import List, Optional, Union

import numpy as np
from numpy.typing import NDArray

from .assembler import AssetAssembler, AssetBundle
from .blendshapes import BlendshapeMapper
from .config import (
    BlendshapeConfig,
    Config,
    FrameConfig,
    HeadConfig,
    MorphConfig,
    PoseConfig,
    SkinToneConfig,
    TextureConfig,
)
from .exporter import AssetExporter
from .frame import BoundingFrame
from .head import HeadExtensionSynthesizer
from .landmarks import DetectionResult, FaceLandmarkIngest, NoFaceDetectedError, complete_landmarks
from .morph import MorphTargetSynthesizer
from .texture import SkinToneSampler, TextureExtractor, load_image

logger = logging.getLogger(__name__)


class HeadPipeline:
    """
    High-level pipeline from photo + detector output to an animatable head.

    This class orchestrates the entire process:
    1. Compute the BoundingFrame of the landmarks
    2. Extract the face texture and sample the skin tone
    3. Normalize landmarks, synthesize the back of the head
    4. Synthesize the 52 morph targets and the coefficient map
    5. Assemble (and optionally pose) the asset

    Each run builds its results locally and installs the new bundle as
    ``current_bundle`` in a single assignment, so a failed run leaves the
    previous bundle untouched.

    Example:
        pipeline = HeadPipeline.from_config(config)
        bundle = pipeline.run_files("photo.png", "landmarks.json")
        pipeline.export("./output")
    """

    def __init__(
        self,
        frame: Optional[FrameConfig] = None,
        texture: Optional[TextureConfig] = None,
        skin_tone: Optional[SkinToneConfig] = None,
        head: Optional[HeadConfig] = None,
        morph: Optional[MorphConfig] = None,
        blendshapes: Optional[BlendshapeConfig] = None,
        pose: Optional[PoseConfig] = None
    ):
        """
        Initialize pipeline.

        Args:
            frame: Bounding frame options
            texture: Texture extraction options
            skin_tone: Skin-tone sampling options
            head: Back-of-head options
            morph: Morph target options
            blendshapes: Coefficient backfill options
            pose: Detector pose options

        Every section defaults to its documented defaults.
        """
        self.frame_config = frame or FrameConfig()
        self.pose_config = pose or PoseConfig()

        texture = texture or TextureConfig()
        skin_tone = skin_tone or SkinToneConfig()
        head = head or HeadConfig()
        morph = morph or MorphConfig()
        blendshapes = blendshapes or BlendshapeConfig()

        self.extractor = TextureExtractor(
            size=texture.size,
            contrast=texture.contrast,
            background=texture.background
        )
        self.sampler = SkinToneSampler(
            sample_points=skin_tone.sample_points,
            patch_size=skin_tone.patch_size
        )
        self.head_synthesizer = HeadExtensionSynthesizer(
            layers=head.layers,
            start_depth=head.start_depth,
            max_depth=head.max_depth,
            min_scale=head.min_scale,
            max_lift=head.max_lift,
            apex_offset=head.apex_offset,
            apex_lift=head.apex_lift,
            falloff=head.falloff
        )
        self.morph_synthesizer = MorphTargetSynthesizer(intensity=morph.intensity)
        self.mapper = BlendshapeMapper(
            heuristics=blendshapes.heuristics,
            jaw_gain=blendshapes.jaw_gain,
            smile_lift_gain=blendshapes.smile_lift_gain,
            smile_width_gain=blendshapes.smile_width_gain,
            brow_gain=blendshapes.brow_gain,
            blink_gain=blendshapes.blink_gain
        )
        self.assembler = AssetAssembler(
            include_translation=self.pose_config.include_translation
        )

        self._current_bundle: Optional[AssetBundle] = None

    @classmethod
    def from_config(cls, config: Config) -> "HeadPipeline":
        """
        Create pipeline from a complete Config.

        Args:
            config: Loaded configuration

        Returns:
            HeadPipeline instance
        """
        return cls(
            frame=config.frame,
            texture=config.texture,
            skin_tone=config.skin_tone,
            head=config.head,
            morph=config.morph,
            blendshapes=config.blendshapes,
            pose=config.pose
        )

    @property
    def current_bundle(self) -> Optional[AssetBundle]:
        """Bundle of the last successful run (None before the first one)."""
        return self._current_bundle

    def run(self, image: NDArray[np.uint8], detection: DetectionResult) -> AssetBundle:
        """
        Build the head asset for one photo.

        Args:
            image: Source photo, (H, W, 3) RGB or (H, W, 4) RGBA uint8
            detection: Landmarks (70 OpenPose points are completed with the
                forehead arc), blendshape scores and optional pose

        Returns:
            The new AssetBundle (also installed as current_bundle)

        Raises:
            NoFaceDetectedError: If the detection holds no landmarks; no
                component runs and current_bundle is unchanged
        """
        landmarks = detection.landmarks
        if landmarks is None or len(landmarks) == 0:
            raise NoFaceDetectedError("No face landmarks detected")
        landmarks = complete_landmarks(landmarks)

        frame = BoundingFrame.from_landmarks(
            landmarks,
            padding=self.frame_config.padding,
            depth_aspect=self.frame_config.depth_aspect,
            min_extent=self.frame_config.min_extent
        )

        texture_result = self.extractor.extract(image, frame)
        skin_tone = self.sampler.sample(texture_result.texture)

        frontal_positions = frame.normalize(landmarks)
        frontal_uvs = frame.uvs(landmarks)

        extension = self.head_synthesizer.synthesize(frontal_positions, skin_tone)

        base_positions = np.vstack([frontal_positions, extension.positions])
        morph_targets = self.morph_synthesizer.synthesize(base_positions)

        coefficients = self.mapper.map(detection.blendshapes, landmarks, frame)

        pose = None
        if self.pose_config.enabled and detection.pose_matrix is not None:
            pose = detection.pose_matrix

        asset = self.assembler.assemble(
            frontal_positions,
            frontal_uvs,
            extension,
            morph_targets,
            skin_tone,
            pose=pose
        )

        texture = texture_result.texture
        texture.setflags(write=False)

        bundle = AssetBundle(
            asset=asset,
            texture=texture,
            coefficients=coefficients,
            crop_rect=texture_result.crop_rect,
            frame=frame
        )

        self._current_bundle = bundle
        logger.debug(
            "Run complete: %d vertices, %d triangles, skin tone %s",
            asset.vertex_count, asset.triangle_count,
            "sampled" if skin_tone.sampled else "default"
        )
        return bundle

    def run_files(
        self,
        image_file: Union[str, Path],
        landmarks_file: Union[str, Path]
    ) -> AssetBundle:
        """
        Load a photo and its detector JSON, then run.

        Args:
            image_file: Path to the source photo
            landmarks_file: Path to the detector JSON

        Returns:
            The new AssetBundle
        """
        detection = FaceLandmarkIngest.from_json(landmarks_file)
        image = load_image(image_file)
        return self.run(image, detection)

    def export(
        self,
        output_dir: Union[str, Path],
        name: str = "head",
        morph_convention: str = "relative",
        preview_ply: bool = True
    ) -> List[Path]:
        """
        Export the current bundle.

        Args:
            output_dir: Directory to write to (created if needed)
            name: Base name of the exported files
            morph_convention: "relative" or "absolute" morph targets
            preview_ply: Also write a PLY preview of the base mesh

        Returns:
            List of written paths

        Raises:
            RuntimeError: If no run has completed yet
            ExportError: If writing fails; the bundle stays valid
        """
        if self._current_bundle is None:
            raise RuntimeError("No asset to export. Call run() first.")

        exporter = AssetExporter(
            self._current_bundle,
            name=name,
            morph_convention=morph_convention,
            preview_ply=preview_ply
        )
        return exporter.export(Path(output_dir))
