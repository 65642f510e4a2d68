"""
face2head - Build an animatable 3D head from a single photo.

This package converts detected face landmarks (plus blendshape scores and
an optional head pose) into:
- A closed head mesh: the frontal face plus a synthesized back of the head
- UVs aligned with a texture cropped from the photo
- 52 ARKit morph targets and the matching coefficient map

Example usage:
    from face2head import HeadPipeline

    pipeline = HeadPipeline()
    bundle = pipeline.run_files("photo.png", "landmarks.json")
    pipeline.export("./output")
"""

__version__ = "0.1.0"

from .assembler import AssetAssembler, AssetBundle, FaceMeshAsset
from .blendshapes import ARKIT_BLENDSHAPE_NAMES, BlendshapeMapper
from .exporter import AssetExporter, ExportError
from .frame import BoundingFrame, CropRect
from .head import HeadExtension, HeadExtensionSynthesizer
from .landmarks import DetectionResult, FaceLandmarkIngest, NoFaceDetectedError
from .morph import MorphTargetSynthesizer
from .pipeline import HeadPipeline
from .texture import SkinTone, SkinToneSampler, TextureExtractor, load_image
from .topology import CANONICAL_TRIANGLES, SILHOUETTE_CONTOUR

__all__ = [
    "ARKIT_BLENDSHAPE_NAMES",
    "AssetAssembler",
    "AssetBundle",
    "AssetExporter",
    "BlendshapeMapper",
    "BoundingFrame",
    "CANONICAL_TRIANGLES",
    "CropRect",
    "DetectionResult",
    "ExportError",
    "FaceLandmarkIngest",
    "FaceMeshAsset",
    "HeadExtension",
    "HeadExtensionSynthesizer",
    "HeadPipeline",
    "MorphTargetSynthesizer",
    "NoFaceDetectedError",
    "SILHOUETTE_CONTOUR",
    "SkinTone",
    "SkinToneSampler",
    "TextureExtractor",
    "load_image",
]
