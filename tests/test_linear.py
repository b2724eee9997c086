from src.predict import geodesy
from src.predict.cone import generate_linear_confidence_cone
from src.predict.linear import predict_linear
from src.predict.types import PredictionConfig, PredictionModel
from src.track.history import PeerLocationEntry

from conftest import T0_MS, history_of, straight_track, track_from_legs

CFG = PredictionConfig(prediction_horizon_minutes=5, min_history_entries=3, max_history_age_minutes=10)


def _angle_diff(a, b):
    return abs((a - b + 180.0) % 360.0 - 180.0)


def test_due_north_at_five_mps(north_history):
    last = north_history.latest_entry()
    pred = predict_linear(north_history, CFG, now_ms=last.timestamp)

    assert pred is not None
    assert pred.prediction_model is PredictionModel.LINEAR
    assert _angle_diff(pred.velocity.heading_deg, 0.0) <= 2.0
    assert abs(pred.velocity.speed_mps - 5.0) <= 0.2

    d = geodesy.distance(last.latitude, last.longitude, *pred.predicted_location.as_tuple())
    assert abs(d - 1500.0) <= 0.05 * 1500.0
    brg = geodesy.bearing(last.latitude, last.longitude, *pred.predicted_location.as_tuple())
    assert _angle_diff(brg, 0.0) <= 2.0

    assert pred.target_timestamp == last.timestamp + 5 * 60 * 1000
    assert pred.predicted_timestamp == last.timestamp
    assert 0.0 <= pred.confidence <= 1.0


def test_same_input_same_prediction(north_history):
    now = north_history.latest_entry().timestamp
    assert predict_linear(north_history, CFG, now_ms=now) == predict_linear(north_history, CFG, now_ms=now)


def test_steadier_track_is_more_confident():
    steady = history_of(track_from_legs([(50.0, 0.0)] * 4))
    erratic = history_of(track_from_legs([(50.0, 0.0), (70.0, 20.0), (35.0, 340.0), (60.0, 10.0)]))
    now = T0_MS + 40_000

    p_steady = predict_linear(steady, CFG, now_ms=now)
    p_erratic = predict_linear(erratic, CFG, now_ms=now)
    assert p_steady is not None and p_erratic is not None
    assert p_steady.confidence >= p_erratic.confidence
    assert p_steady.velocity.heading_uncertainty_deg <= p_erratic.velocity.heading_uncertainty_deg


def test_teleport_sample_does_not_move_average_speed():
    clean = straight_track()
    third = clean[2]
    far_lat, far_lon = geodesy.destination(third.latitude, third.longitude, 50_000.0, 90.0)
    teleport = PeerLocationEntry(third.peer_id, far_lat, far_lon, third.timestamp + 1000)

    now = clean[-1].timestamp
    base = predict_linear(history_of(clean), CFG, now_ms=now)
    jumped = predict_linear(history_of(clean + [teleport]), CFG, now_ms=now)

    assert base is not None and jumped is not None
    assert abs(jumped.velocity.speed_mps - base.velocity.speed_mps) < 1e-6
    assert _angle_diff(jumped.velocity.heading_deg, 0.0) <= 2.0


def test_stationary_peer_predicts_in_place():
    fixes = [PeerLocationEntry("still", 52.0, 13.0, T0_MS + i * 10_000) for i in range(4)]
    pred = predict_linear(history_of(fixes), CFG, now_ms=fixes[-1].timestamp)
    assert pred is not None
    assert pred.velocity.speed_mps == 0.0
    assert geodesy.distance(52.0, 13.0, *pred.predicted_location.as_tuple()) < 1e-6
    assert 0.0 <= pred.confidence <= 1.0


def test_stale_history_gives_no_prediction(north_history):
    later = north_history.latest_entry().timestamp + 11 * 60 * 1000
    assert predict_linear(north_history, CFG, now_ms=later) is None


def test_newest_fix_glitch_does_not_move_the_anchor():
    clean = straight_track()
    last = clean[-1]
    far_lat, far_lon = geodesy.destination(last.latitude, last.longitude, 50_000.0, 90.0)
    glitch = PeerLocationEntry(last.peer_id, far_lat, far_lon, last.timestamp + 1000)
    hist = history_of(clean + [glitch])

    pred = predict_linear(hist, CFG, now_ms=glitch.timestamp)
    assert pred is not None
    d = geodesy.distance(last.latitude, last.longitude, *pred.predicted_location.as_tuple())
    assert abs(d - 1500.0) <= 0.05 * 1500.0
    assert _angle_diff(pred.velocity.heading_deg, 0.0) <= 2.0

    c = generate_linear_confidence_cone(pred, hist, CFG)
    assert c is not None
    assert geodesy.distance(last.latitude, last.longitude, *c.center_line[-1].as_tuple()) < 5000.0


def test_glitches_leaving_too_few_fixes_give_no_prediction():
    a, b = straight_track(n=2)
    lat, lon = geodesy.destination(b.latitude, b.longitude, 50_000.0, 90.0)
    jumped = PeerLocationEntry(b.peer_id, lat, lon, b.timestamp + 1000)
    assert predict_linear(history_of([a, b, jumped]), CFG, now_ms=jumped.timestamp) is None
