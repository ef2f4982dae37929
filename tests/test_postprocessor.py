import numpy as np

from services.detector.base_detector import Detection
from services.detector.postprocessor import (
    HeadLayout,
    Layout,
    PostprocessOpts,
    apply_nms,
    compute_iou,
    decode,
    infer_layout,
)
from services.detector.preprocessor import letterbox

ANCHORS = 8400


def _channel_first(boxes, num_attrs=6):
    """Build a [attrs, anchors] head with the given rows placed at anchors 0..n."""
    out = np.zeros((num_attrs, ANCHORS), dtype=np.float32)
    for i, row in enumerate(boxes):
        out[:, i] = row
    return out


def test_infer_layout_from_length():
    assert infer_layout(6 * ANCHORS) == HeadLayout(Layout.CHANNEL_FIRST, 6, ANCHORS)
    assert infer_layout(5 * ANCHORS) == HeadLayout(Layout.CHANNEL_FIRST, 5, ANCHORS)


def test_infer_layout_from_shape():
    assert infer_layout(6 * ANCHORS, shape=(1, 6, ANCHORS)).layout == Layout.CHANNEL_FIRST
    head = infer_layout(6 * ANCHORS, shape=(1, ANCHORS, 6))
    assert head.layout == Layout.TRANSPOSED
    assert head.num_attrs == 6
    assert head.num_boxes == ANCHORS


def test_infer_layout_fallback():
    head = infer_layout(7 * ANCHORS)
    assert head.layout == Layout.CHANNEL_FIRST
    assert head.num_attrs == 7


def test_decode_channel_first_with_objectness():
    raw = _channel_first([[320, 320, 100, 50, 0.9, 0.9]])
    dets = decode(raw, 640, 640, scale=1.0, pad_x=0, pad_y=0)

    assert len(dets) == 1
    det = dets[0]
    assert det.class_name == "busnumber"
    assert abs(det.confidence - 0.81) < 1e-5
    assert np.allclose(det.bbox, (270, 295, 100, 50))


def test_decode_transposed_matches_channel_first():
    raw = _channel_first([[320, 320, 100, 50, 0.9, 0.9]])
    a = decode(raw, 640, 640, 1.0, 0, 0)
    b = decode(np.ascontiguousarray(raw.T), 640, 640, 1.0, 0, 0)

    assert len(a) == len(b) == 1
    assert np.allclose(a[0].bbox, b[0].bbox)
    assert abs(a[0].confidence - b[0].confidence) < 1e-6


def test_decode_five_attributes_uses_class_score_only():
    raw = _channel_first([[320, 320, 100, 50, 0.7]], num_attrs=5)
    dets = decode(raw.reshape(-1), 640, 640, 1.0, 0, 0)

    assert len(dets) == 1
    assert abs(dets[0].confidence - 0.7) < 1e-6


def test_decode_below_threshold_is_dropped():
    raw = _channel_first([[320, 320, 100, 50, 0.4, 0.5]])
    assert decode(raw, 640, 640, 1.0, 0, 0, conf_threshold=0.25) == []


def test_decode_undoes_letterbox():
    frame = np.zeros((720, 1280, 3), dtype=np.uint8)
    prep = letterbox(frame, 640)
    assert prep.scale == 0.5
    assert (prep.pad_x, prep.pad_y) == (0, 140)

    # frame box (100, 200, 300, 100) in model pixels
    raw = _channel_first([[125, 265, 150, 50, 1.0, 1.0]])
    dets = decode(raw, 1280, 720, prep.scale, prep.pad_x, prep.pad_y)

    assert len(dets) == 1
    assert np.allclose(dets[0].bbox, (100, 200, 300, 100), atol=1e-3)


def test_decode_clips_to_frame():
    raw = _channel_first([[20, 320, 100, 60, 1.0, 1.0]])
    dets = decode(raw, 640, 640, 1.0, 0, 0)

    x, y, w, h = dets[0].bbox
    assert x == 0
    assert w == 70


def test_decode_filters_small_and_stretched_boxes():
    raw = _channel_first(
        [
            [100, 100, 10, 10, 1.0, 1.0],  # area 100 < 144
            [320, 320, 300, 20, 1.0, 1.0],  # aspect 15
            [500, 500, 60, 40, 1.0, 1.0],  # kept
        ]
    )
    dets = decode(raw, 640, 640, 1.0, 0, 0)

    assert len(dets) == 1
    assert np.allclose(dets[0].bbox, (470, 480, 60, 40))


def test_decode_class_allow_list():
    opts = PostprocessOpts(class_names=["busnumber", "other"], allowed_class_names=["busnumber"])
    raw = _channel_first(
        [
            [200, 200, 80, 40, 1.0, 0.9, 0.1],
            [450, 450, 80, 40, 1.0, 0.1, 0.9],
        ],
        num_attrs=7,
    )
    dets = decode(raw, 640, 640, 1.0, 0, 0, opts=opts)

    assert [d.class_name for d in dets] == ["busnumber"]


def test_decode_normalized_coordinates():
    opts = PostprocessOpts(coords_normalized=True)
    raw = _channel_first([[0.5, 0.5, 100 / 640, 50 / 640, 1.0, 1.0]])
    dets = decode(raw, 640, 640, 1.0, 0, 0, opts=opts)

    assert np.allclose(dets[0].bbox, (270, 295, 100, 50), atol=1e-3)


def test_decode_empty_buffer():
    assert decode(np.zeros(0, dtype=np.float32), 640, 640, 1.0, 0, 0) == []


def test_compute_iou():
    assert compute_iou((0, 0, 10, 10), (0, 0, 10, 10)) == 1.0
    assert compute_iou((0, 0, 10, 10), (20, 20, 5, 5)) == 0.0
    assert abs(compute_iou((0, 0, 10, 10), (5, 0, 10, 10)) - 50 / 150) < 1e-9


def test_nms_keeps_highest_and_is_idempotent():
    dets = [
        Detection(bbox=(0, 0, 100, 50), confidence=0.6),
        Detection(bbox=(5, 2, 100, 50), confidence=0.9),
        Detection(bbox=(300, 300, 80, 40), confidence=0.5),
    ]
    kept = apply_nms(dets, 0.45)

    assert [d.confidence for d in kept] == [0.9, 0.5]
    assert apply_nms(kept, 0.45) == kept
