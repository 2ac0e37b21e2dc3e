"""Configuration package for the live skeleton tracker."""
from configs.config import (
    PipelineConfig,
    CameraConfig,
    SchedulerConfig,
    VisualizationConfig,
    SmoothingConfig,
    ModelComplexity,
    ARM_MARKER_INDICES,
    get_arm_config,
    get_hand_config,
    load_config,
)
