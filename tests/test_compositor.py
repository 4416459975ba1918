from __future__ import annotations

import unittest

import numpy as np
from PIL import Image

from core.compositor import placement_affine, render_composite, rendered_size
from core.state import Transform

BLUE = (0, 0, 255, 255)
RED = (255, 0, 0, 255)


def _arr(img: Image.Image) -> np.ndarray:
    return np.array(img.convert("RGBA"), dtype=np.uint8)


class CompositorTests(unittest.TestCase):
    def setUp(self) -> None:
        self.bg = Image.new("RGBA", (100, 100), BLUE)
        self.fg = Image.new("RGBA", (20, 10), RED)

    def test_background_only_is_stretched_to_canvas(self) -> None:
        out = render_composite(self.bg, None, Transform(), (50, 30))
        self.assertEqual(out.size, (50, 30))
        self.assertTrue(np.all(_arr(out) == np.array(BLUE, dtype=np.uint8)))

    def test_untransformed_foreground_is_centred(self) -> None:
        out = render_composite(self.bg, self.fg, Transform(), (100, 100))
        expected = self.bg.copy()
        expected.paste(self.fg, (40, 45))
        np.testing.assert_array_equal(_arr(out), _arr(expected))

    def test_reset_restores_untransformed_render(self) -> None:
        t = Transform(x=31, y=-12, scale=2.2, rotation=77, opacity=0.4)
        render_composite(self.bg, self.fg, t, (100, 100))
        t.reset()
        out = render_composite(self.bg, self.fg, t, (100, 100))
        np.testing.assert_array_equal(_arr(out), _arr(render_composite(self.bg, self.fg, Transform(), (100, 100))))
        self.assertEqual(tuple(_arr(out)[50, 50]), RED)
        self.assertEqual(tuple(_arr(out)[50, 35]), BLUE)

    def test_repeat_renders_are_byte_identical(self) -> None:
        rng = np.random.default_rng(7)
        fg = Image.fromarray(rng.integers(0, 256, size=(13, 29, 4), dtype=np.uint8))
        t = Transform(x=7.3, y=-4.1, scale=1.37, rotation=33.0, opacity=0.6)
        a = render_composite(self.bg, fg, t, (100, 100))
        b = render_composite(self.bg, fg, t, (100, 100))
        self.assertEqual(a.tobytes(), b.tobytes())

    def test_inputs_are_not_modified(self) -> None:
        bg_before = self.bg.tobytes()
        fg_before = self.fg.tobytes()
        render_composite(self.bg, self.fg, Transform(x=5, rotation=30, opacity=0.5), (100, 100))
        self.assertEqual(self.bg.tobytes(), bg_before)
        self.assertEqual(self.fg.tobytes(), fg_before)

    def test_translation_moves_foreground(self) -> None:
        out = _arr(render_composite(self.bg, self.fg, Transform(x=20, y=-30), (100, 100)))
        # centre moves from (50, 50) to (70, 20)
        self.assertEqual(tuple(out[20, 70]), RED)
        self.assertEqual(tuple(out[50, 50]), BLUE)

    def test_zero_opacity_leaves_background(self) -> None:
        out = render_composite(self.bg, self.fg, Transform(opacity=0.0), (100, 100))
        np.testing.assert_array_equal(_arr(out), _arr(self.bg))

    def test_half_opacity_blends(self) -> None:
        out = _arr(render_composite(self.bg, self.fg, Transform(opacity=0.5), (100, 100)))
        r, g, b, a = (int(v) for v in out[50, 50])
        self.assertLess(abs(r - 128), 2)
        self.assertLess(abs(b - 127), 2)
        self.assertEqual(a, 255)

    def test_rotation_is_clockwise(self) -> None:
        # 20x10 bar rotated 90 degrees becomes 10 wide, 20 tall
        out = _arr(render_composite(self.bg, self.fg, Transform(rotation=90), (100, 100)))
        self.assertEqual(tuple(out[42, 50]), RED)
        self.assertEqual(tuple(out[57, 50]), RED)
        self.assertEqual(tuple(out[50, 42]), BLUE)
        self.assertEqual(tuple(out[50, 57]), BLUE)

    def test_clockwise_rotation_of_offset_point(self) -> None:
        # A marker right of centre ends up below centre after +90 degrees.
        fg = Image.new("RGBA", (40, 40), (0, 0, 0, 0))
        fg.paste(Image.new("RGBA", (6, 6), RED), (30, 17))
        out = _arr(render_composite(self.bg, fg, Transform(rotation=90), (100, 100)))
        self.assertEqual(tuple(out[63, 50]), RED)
        self.assertEqual(tuple(out[50, 63]), BLUE)

    def test_scaled_and_rotated_extent(self) -> None:
        t = Transform(scale=2.0, rotation=90)
        out = _arr(render_composite(self.bg, self.fg, t, (100, 100)))
        # scaled bar is 40x20, rotated to 20 wide by 40 tall
        self.assertEqual(tuple(out[32, 50]), RED)
        self.assertEqual(tuple(out[50, 38]), BLUE)

    def test_foreground_size_follows_canvas_resolution(self) -> None:
        bg = Image.new("RGBA", (200, 100), BLUE)
        fg = Image.new("RGBA", (40, 20), RED)
        small = _arr(render_composite(bg, fg, Transform(), (100, 50)))
        red_small = np.all(small == np.array(RED, dtype=np.uint8), axis=2)
        self.assertEqual(int(red_small.sum()), 20 * 10)
        self.assertEqual(rendered_size((40, 20), (200, 100), (100, 50)), (20.0, 10.0))

    def test_zero_scale_draws_nothing(self) -> None:
        self.assertIsNone(placement_affine((10, 10), (10.0, 10.0), (100, 100), Transform(scale=0.0)))
        out = render_composite(self.bg, self.fg, Transform(scale=0.0), (100, 100))
        np.testing.assert_array_equal(_arr(out), _arr(self.bg))

    def test_foreground_fully_off_canvas(self) -> None:
        out = render_composite(self.bg, self.fg, Transform(x=5000, y=5000), (100, 100))
        np.testing.assert_array_equal(_arr(out), _arr(self.bg))

    def test_bad_canvas_size_raises(self) -> None:
        with self.assertRaises(ValueError):
            render_composite(self.bg, self.fg, Transform(), (0, 10))


if __name__ == "__main__":
    unittest.main()
