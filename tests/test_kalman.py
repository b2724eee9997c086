import pytest

from src.predict import geodesy, kalman
from src.predict.types import KalmanState, PredictionConfig, PredictionModel
from src.track.history import PeerLocationEntry

from conftest import history_of, straight_track

CFG = PredictionConfig(prediction_horizon_minutes=5, min_history_entries=3, max_history_age_minutes=10)


def _angle_diff(a, b):
    return abs((a - b + 180.0) % 360.0 - 180.0)


def _state(**kw):
    base = dict(lat=52.0, lon=13.0, v_lat=1e-5, v_lon=0.0, p_lat=1e-8, p_lon=1e-8, p_v_lat=1e-9, p_v_lon=1e-9)
    base.update(kw)
    return KalmanState(**base)


def test_predict_grows_and_update_shrinks_position_variance():
    s = _state()
    p = kalman.kalman_predict(s, 10.0)
    assert p.lat == pytest.approx(s.lat + s.v_lat * 10.0)
    assert p.p_lat == pytest.approx(s.p_lat + s.p_v_lat * 100.0)
    u = kalman.kalman_update(p, p.lat + 1e-4, p.lon)
    assert u.p_lat < p.p_lat
    assert p.lat < u.lat < p.lat + 1e-4
    # the correction step carries velocity unchanged
    assert (u.v_lat, u.v_lon, u.p_v_lat, u.p_v_lon) == (p.v_lat, p.v_lon, p.p_v_lat, p.p_v_lon)


def test_due_north_forecast(north_history):
    last = north_history.latest_entry()
    pred = kalman.predict_kalman_filter(north_history, CFG, now_ms=last.timestamp)

    assert pred is not None
    assert pred.prediction_model is PredictionModel.KALMAN_FILTER
    d = geodesy.distance(last.latitude, last.longitude, *pred.predicted_location.as_tuple())
    assert abs(d - 1500.0) <= 0.05 * 1500.0
    assert _angle_diff(pred.velocity.heading_deg, 0.0) <= 2.0
    assert abs(pred.velocity.speed_mps - 5.0) <= 0.2
    assert 0.0 <= pred.confidence <= 1.0
    assert 1.0 <= pred.velocity.heading_uncertainty_deg <= 45.0

    # attached state is the filtered state at the latest fix
    st = pred.kalman_state
    assert st is not None
    assert geodesy.distance(st.lat, st.lon, last.latitude, last.longitude) < 1.0


def test_same_input_same_prediction(north_history):
    now = north_history.latest_entry().timestamp
    a = kalman.predict_kalman_filter(north_history, CFG, now_ms=now)
    b = kalman.predict_kalman_filter(north_history, CFG, now_ms=now)
    assert a == b


def test_gps_jump_is_filtered_before_replay():
    clean = straight_track()
    third = clean[2]
    far = geodesy.destination(third.latitude, third.longitude, 50_000.0, 90.0)
    jumped = clean + [PeerLocationEntry(third.peer_id, far[0], far[1], third.timestamp + 1000)]

    now = clean[-1].timestamp
    pred = kalman.predict_kalman_filter(history_of(jumped), CFG, now_ms=now)
    assert pred is not None
    assert _angle_diff(pred.velocity.heading_deg, 0.0) <= 2.0


def test_confidence_falls_with_uncertainty():
    tight = _state(p_lat=1e-12, p_lon=1e-12, p_v_lat=1e-14, p_v_lon=1e-14)
    loose = _state(p_lat=1e-6, p_lon=1e-6, p_v_lat=1e-8, p_v_lon=1e-8)
    assert kalman.kalman_confidence(tight) > kalman.kalman_confidence(loose)
    assert 0.0 <= kalman.kalman_confidence(loose) <= 1.0
