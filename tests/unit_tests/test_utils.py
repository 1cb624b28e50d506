import pytest

from utils import as_color, clamp_int, deep_get, manhattan, point_key


class TestUtils:
    """Small helpers shared by config, generator and engine."""

    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("#cf5142", (207, 81, 66)),
            ("67c6ff", (103, 198, 255)),
            ([300, -4, 12, 99], (255, 0, 12)),
            ("#12", (1, 2, 3)),
            (None, (1, 2, 3)),
            (["a", 1, 2], (1, 2, 3)),
        ],
    )
    def test_that_colors_parse_or_fall_back(self, raw, expected):
        assert as_color(raw, (1, 2, 3)) == expected

    def test_that_deep_get_walks_dotted_paths(self):
        cfg = {"window": {"width": 800}, "tile_size": 44}

        assert deep_get(cfg, "window.width", 0) == 800
        assert deep_get(cfg, "window.height", 760) == 760
        assert deep_get(cfg, "tile_size.x", 1) == 1

    def test_that_grid_helpers_agree_with_coordinates(self):
        assert clamp_int(120, 0, 99) == 99
        assert manhattan((1, 1), (4, 5)) == 7
        assert point_key((3, 14)) == "3,14"
