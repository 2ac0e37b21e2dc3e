"""Tests for the MediaPipe model adapters."""

import types
from unittest import mock

import numpy as np
import pytest

from tracker.errors import InitError
from tracker.models import ModelOptions, create_hand_model, create_pose_model


def test_build_without_solutions_api_is_init_error():
    stripped = types.ModuleType("mediapipe")
    stripped.__version__ = "0.10.30"

    with mock.patch.dict("sys.modules", {"mediapipe": stripped}):
        with pytest.raises(InitError, match="<0.10.30"):
            create_pose_model(ModelOptions())


@pytest.mark.parametrize("factory,options", [
    (create_pose_model, ModelOptions()),
    (create_hand_model, ModelOptions(max_subjects=2)),
])
def test_real_models_load_and_run(factory, options):
    pytest.importorskip("mediapipe")

    model = factory(options)
    try:
        result = model.process(np.zeros((240, 320, 3), dtype=np.uint8))
        assert result is not None
    finally:
        model.close()
