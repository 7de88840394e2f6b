from __future__ import annotations

from typing import Any

# Detector/preview convention presets.
#
# Notes:
# - rotate_before_detection=False keeps the raw (sideways) buffer and signals the
#   rotation through metadata; the mapper swaps axes.
# - normalized_points selects [0, 1] output instead of pixels.
# - mirror_convention is fixed per capture session; "upstream" means the detector
#   already sees the mirrored image.


PRESETS: dict[str, dict[str, Any]] = {
    # Portrait phone feed from a landscape sensor, orientation passed as a hint.
    "rotated_metadata": {
        "rotation_degrees": 90,
        "rotate_before_detection": False,
        "normalized_points": False,
        "mirror_convention": "flip",
    },
    # Buffer rotated upright before detection, normalized landmarks.
    "upright_normalized": {
        "rotation_degrees": 90,
        "rotate_before_detection": True,
        "normalized_points": True,
        "mirror_convention": "flip",
    },
    # Plain desktop webcam, the detector sees the selfie (mirrored) image.
    "mirror_upstream": {
        "rotation_degrees": 0,
        "rotate_before_detection": True,
        "normalized_points": False,
        "mirror_convention": "upstream",
    },
}


PRESET_LABELS: dict[str, str] = {
    "rotated_metadata": "Rotation as metadata (pixels)",
    "upright_normalized": "Upright input (normalized)",
    "mirror_upstream": "Mirrored detector input",
}


def list_presets() -> list[dict[str, Any]]:
    return [
        {
            "id": preset_id,
            "label": PRESET_LABELS.get(preset_id, preset_id),
            "settings": PRESETS[preset_id],
        }
        for preset_id in PRESETS.keys()
    ]


def preset_patch(preset_id: str) -> dict[str, Any]:
    if preset_id not in PRESETS:
        raise KeyError(preset_id)
    return dict(PRESETS[preset_id])
