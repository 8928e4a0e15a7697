import threading

import pytest

from orbpose.viewer_state import ViewerSettings, ViewerState


def test_settings_defaults_when_missing():
    settings = ViewerSettings.from_mapping({})
    assert settings.frame_time_ms == pytest.approx(1e3 / 30)
    assert settings.image_width == 640
    assert settings.image_height == 480
    assert settings.viewpoint_f == 0.0


def test_settings_read_values():
    mapping = {
        "Camera.fps": 20,
        "Camera.width": 1241,
        "Camera.height": 376,
        "Viewer.ViewpointX": 0.0,
        "Viewer.ViewpointY": -0.7,
        "Viewer.ViewpointZ": -1.8,
        "Viewer.ViewpointF": 500.0,
    }
    settings = ViewerSettings.from_mapping(mapping)
    assert settings.frame_time_ms * 20 == pytest.approx(1e3)
    assert (settings.image_width, settings.image_height) == (1241, 376)
    assert settings.viewpoint_y == -0.7
    assert settings.viewpoint_z == -1.8
    assert settings.viewpoint_f == 500.0


def test_settings_invalid_size_falls_back():
    settings = ViewerSettings.from_mapping({"Camera.width": 800, "Camera.height": 0})
    assert (settings.image_width, settings.image_height) == (640, 480)


def test_settings_non_numeric_raises():
    with pytest.raises(ValueError):
        ViewerSettings.from_mapping({"Camera.fps": "fast"})


def test_fresh_state_is_finished_and_stopped():
    state = ViewerState()
    assert state.is_finished() is True
    assert state.is_stopped() is True
    assert state.check_finish() is False


def test_start_clears_flags():
    state = ViewerState()
    state.start()
    assert state.is_finished() is False
    assert state.is_stopped() is False


def test_request_stop_ignored_when_stopped():
    state = ViewerState()
    state.request_stop()
    assert state.stop() is False


def test_stop_cycle():
    state = ViewerState()
    state.start()
    assert state.stop() is False
    state.request_stop()
    assert state.stop() is True
    assert state.is_stopped() is True
    assert state.stop() is False
    state.release()
    assert state.is_stopped() is False


def test_finish_request_prevents_stop():
    state = ViewerState()
    state.start()
    state.request_stop()
    state.request_finish()
    assert state.stop() is False
    assert state.check_finish() is True
    assert state.is_stopped() is False


def test_set_finish():
    state = ViewerState()
    state.start()
    state.request_finish()
    state.set_finish()
    assert state.is_finished() is True


def test_stop_from_other_thread():
    state = ViewerState()
    state.start()
    worker = threading.Thread(target=state.request_stop)
    worker.start()
    worker.join()
    assert state.stop() is True
    assert state.is_stopped() is True