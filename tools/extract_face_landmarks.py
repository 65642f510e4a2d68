#!/usr/bin/env python3
"""
Run MediaPipe FaceLandmarker on a photo and save everything face2head needs.

Outputs a JSON file containing:
- raw MediaPipe landmarks (478 points, normalized image coordinates)
- the 52 ARKit blendshape scores
- the facial transformation matrix (16 values, row-major)

The face2head library converts these to its frontal layout (OpenPose Face 70
plus a forehead arc from the face oval) via FaceLandmarkIngest.

Requirements:
    pip install mediapipe opencv-python

Usage:
    python extract_face_landmarks.py photo.jpg -o landmarks.json
    python extract_face_landmarks.py photo.jpg  # prints to stdout

The output JSON is the second positional argument of face2head:
    face2head photo.jpg landmarks.json -o output/

On first run, the FaceLandmarker model (~4MB) is downloaded automatically
to ~/.cache/face2head/face_landmarker.task.
"""

import argparse
import json
import sys
import urllib.request
from pathlib import Path

LANDMARKER_MODEL_URL = (
    "https://storage.googleapis.com/mediapipe-models/"
    "face_landmarker/face_landmarker/float16/1/face_landmarker.task"
)
MODEL_CACHE_DIR = Path.home() / ".cache" / "face2head"
LANDMARKER_MODEL_PATH = MODEL_CACHE_DIR / "face_landmarker.task"


def _ensure_model(url: str, path: Path) -> Path:
    """Download a model file if not cached."""
    if path.exists():
        return path

    path.parent.mkdir(parents=True, exist_ok=True)
    print(f"Downloading {path.name}...", file=sys.stderr)
    urllib.request.urlretrieve(url, str(path))
    print("Done.", file=sys.stderr)
    return path


def extract_landmarks(
    image_path: str,
    landmarker_model_path: str = None,
    min_confidence: float = 0.3,
) -> dict:
    """
    Detect the face in an image with MediaPipe.

    Only the first detected face is used.

    Args:
        image_path: Path to input image
        landmarker_model_path: Path to FaceLandmarker .task model
        min_confidence: Minimum face detection confidence (0-1)

    Returns:
        Dictionary ready for JSON serialization. "landmarks" is empty when
        no face was found; face2head reports that as "no face detected".
    """
    try:
        import mediapipe as mp
        from mediapipe.tasks import python
        from mediapipe.tasks.python import vision
    except ImportError:
        print(
            "Error: mediapipe is required.\n"
            "Install with: pip install mediapipe",
            file=sys.stderr
        )
        sys.exit(1)

    import cv2
    import numpy as np

    if landmarker_model_path is None:
        landmarker_model_path = str(
            _ensure_model(LANDMARKER_MODEL_URL, LANDMARKER_MODEL_PATH)
        )

    bgr = cv2.imread(image_path)
    if bgr is None:
        print(f"Error: Could not read image: {image_path}", file=sys.stderr)
        sys.exit(1)
    rgb = np.ascontiguousarray(cv2.cvtColor(bgr, cv2.COLOR_BGR2RGB))
    height, width = rgb.shape[:2]

    options = vision.FaceLandmarkerOptions(
        base_options=python.BaseOptions(
            model_asset_path=landmarker_model_path
        ),
        min_face_detection_confidence=min_confidence,
        min_face_presence_confidence=min_confidence,
        output_face_blendshapes=True,
        output_facial_transformation_matrixes=True,
        num_faces=1,
    )
    landmarker = vision.FaceLandmarker.create_from_options(options)

    try:
        image = mp.Image(image_format=mp.ImageFormat.SRGB, data=rgb)
        result = landmarker.detect(image)
    finally:
        landmarker.close()

    output = {
        "version": "1.0",
        "source": "mediapipe",
        "source_image": str(Path(image_path).name),
        "image_size": [width, height],
        "landmarks": [],
    }

    if not result.face_landmarks:
        print(
            f"Warning: No face detected in image ({width}x{height}).",
            file=sys.stderr
        )
        return output

    face = result.face_landmarks[0]
    output["n_landmarks"] = len(face)
    output["refined"] = len(face) >= 478
    output["landmarks"] = [
        [round(lm.x, 6), round(lm.y, 6), round(lm.z, 6)]
        for lm in face
    ]

    if result.face_blendshapes:
        output["blendshapes"] = [
            {"categoryName": category.category_name, "score": round(category.score, 6)}
            for category in result.face_blendshapes[0]
        ]

    if result.facial_transformation_matrixes:
        matrix = np.asarray(result.facial_transformation_matrixes[0], dtype=float)
        output["transformation_matrix"] = [round(v, 6) for v in matrix.reshape(-1)]

    return output


def main():
    parser = argparse.ArgumentParser(
        description="Extract face landmarks, blendshapes and pose with MediaPipe FaceLandmarker"
    )
    parser.add_argument(
        "image",
        help="Path to input image"
    )
    parser.add_argument(
        "-o", "--output",
        help="Output JSON file path (default: stdout)"
    )
    parser.add_argument(
        "--landmarker-model",
        help="Path to FaceLandmarker .task model (auto-downloaded if not specified)"
    )
    parser.add_argument(
        "--min-confidence",
        type=float,
        default=0.3,
        help="Minimum face detection confidence 0-1 (default: 0.3)"
    )

    args = parser.parse_args()

    result = extract_landmarks(
        args.image,
        landmarker_model_path=args.landmarker_model,
        min_confidence=args.min_confidence,
    )

    json_str = json.dumps(result, indent=2)

    if args.output:
        with open(args.output, 'w') as f:
            f.write(json_str)
            f.write('\n')
        print(f"Detection saved to: {args.output}", file=sys.stderr)
    else:
        print(json_str)


if __name__ == "__main__":
    main()
