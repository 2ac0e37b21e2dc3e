"""Tests for pipeline configuration, presets and JSON overrides."""

import dataclasses
import json

import pytest

from configs.config import (
    ARM_MARKER_INDICES,
    CameraConfig,
    ModelComplexity,
    PipelineConfig,
    SchedulerConfig,
    VisualizationConfig,
    get_arm_config,
    get_hand_config,
    load_config,
)


class TestPipelineConfig:

    def test_defaults(self):
        config = PipelineConfig()
        assert config.overlay_enabled is True
        assert config.detection_confidence_threshold == 0.5
        assert config.tracking_confidence_threshold == 0.5
        assert config.max_subjects == 1
        assert config.model_complexity is ModelComplexity.MID
        assert config.smooth_landmarks is True
        assert config.camera.facing_mode == "user"
        assert (config.camera.ideal_width, config.camera.ideal_height) == (640, 480)

    def test_frozen(self):
        config = PipelineConfig()
        with pytest.raises(dataclasses.FrozenInstanceError):
            config.overlay_enabled = False

    @pytest.mark.parametrize("field_name", ["detection_confidence_threshold", "tracking_confidence_threshold"])
    def test_threshold_range(self, field_name):
        with pytest.raises(ValueError):
            PipelineConfig(**{field_name: 1.5})

    def test_max_subjects_positive(self):
        with pytest.raises(ValueError):
            PipelineConfig(max_subjects=0)

    def test_complexity_coerced_from_name(self):
        assert PipelineConfig(model_complexity="high").model_complexity is ModelComplexity.HIGH
        assert PipelineConfig(model_complexity=0).model_complexity is ModelComplexity.LOW


class TestSections:

    def test_camera_validation(self):
        with pytest.raises(ValueError):
            CameraConfig(facing_mode="sideways")
        with pytest.raises(ValueError):
            CameraConfig(ideal_width=0)

    def test_scheduler_tick_interval(self):
        assert SchedulerConfig(refresh_hz=50).tick_interval == pytest.approx(0.02)

    def test_scheduler_only_drop_policy(self):
        with pytest.raises(ValueError):
            SchedulerConfig(drop_policy="queue")

    def test_visualization_opacity_range(self):
        with pytest.raises(ValueError):
            VisualizationConfig(background_opacity=1.2)


class TestModelComplexity:

    @pytest.mark.parametrize("value,expected", [
        ("low", ModelComplexity.LOW),
        ("Mid", ModelComplexity.MID),
        ("2", ModelComplexity.HIGH),
        (1, ModelComplexity.MID),
        (ModelComplexity.HIGH, ModelComplexity.HIGH),
    ])
    def test_parse(self, value, expected):
        assert ModelComplexity.parse(value) is expected

    def test_parse_unknown(self):
        with pytest.raises(ValueError):
            ModelComplexity.parse("ultra")


class TestPresets:

    def test_arm_preset(self):
        config = get_arm_config()
        assert config.max_subjects == 1
        assert config.visualization.marker_indices == ARM_MARKER_INDICES
        assert ARM_MARKER_INDICES[0] == 11 and ARM_MARKER_INDICES[-1] == 22

    def test_hand_preset(self):
        config = get_hand_config()
        assert config.max_subjects == 2
        assert config.visualization.connector_thickness == 3
        assert config.visualization.marker_indices is None

    def test_presets_are_independent(self):
        assert get_arm_config() == get_arm_config()
        assert get_arm_config() is not get_arm_config()


class TestLoadConfig:

    def test_nested_overrides(self, tmp_path):
        path = tmp_path / "tracker.json"
        path.write_text(json.dumps({
            "max_subjects": 2,
            "model_complexity": "low",
            "camera": {"device_index": 3, "mirror": False},
            "visualization": {"landmark_color": [255, 0, 0], "marker_indices": [15, 16]},
        }))

        config = load_config(path, base=get_arm_config())

        assert config.max_subjects == 2
        assert config.model_complexity is ModelComplexity.LOW
        assert config.camera.device_index == 3
        assert config.camera.mirror is False
        assert config.camera.ideal_width == 640
        assert config.visualization.landmark_color == (255, 0, 0)
        assert config.visualization.marker_indices == (15, 16)
        assert config.visualization.connector_thickness == 2

    def test_unknown_key(self, tmp_path):
        path = tmp_path / "tracker.json"
        path.write_text(json.dumps({"camera": {"zoom": 2}}))
        with pytest.raises(ValueError, match="zoom"):
            load_config(path)

    def test_invalid_value(self, tmp_path):
        path = tmp_path / "tracker.json"
        path.write_text(json.dumps({"detection_confidence_threshold": 3}))
        with pytest.raises(ValueError):
            load_config(path)

    def test_root_must_be_object(self, tmp_path):
        path = tmp_path / "tracker.json"
        path.write_text("[1, 2]")
        with pytest.raises(ValueError):
            load_config(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "missing.json")
