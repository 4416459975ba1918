from __future__ import annotations

import io
import unittest

from PIL import Image

from core.errors import DecodeError, InvalidInputError
from core.io import decode_raster, encode_image, validate_upload
from core.session import EditorSession


def _png_bytes(size=(40, 30), color=(0, 128, 255, 255)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGBA", size, color).save(buf, format="PNG")
    return buf.getvalue()


class UploadValidationTests(unittest.TestCase):
    def test_oversize_rejected(self) -> None:
        data = b"\0" * (11 * 1024 * 1024)
        with self.assertRaises(InvalidInputError):
            validate_upload(data, name="big.png", media_type="image/png")

    def test_exactly_limit_accepted(self) -> None:
        data = b"\0" * (10 * 1024 * 1024)
        self.assertEqual(validate_upload(data, name="ok.png", media_type="image/png"), "image/png")

    def test_non_image_type_rejected(self) -> None:
        with self.assertRaises(InvalidInputError):
            validate_upload(b"hello", name="notes.txt", media_type="text/plain")
        with self.assertRaises(InvalidInputError):
            validate_upload(b"hello", name="notes.txt")

    def test_media_type_guessed_from_name(self) -> None:
        self.assertEqual(validate_upload(b"x", name="photo.JPG"), "image/jpeg")

    def test_empty_rejected(self) -> None:
        with self.assertRaises(InvalidInputError):
            validate_upload(b"", name="a.png")


class DecodeEncodeTests(unittest.TestCase):
    def test_decode_to_rgba_raster(self) -> None:
        r = decode_raster(_png_bytes((7, 5)), name="a.png", media_type="image/png")
        self.assertEqual((r.width, r.height), (7, 5))
        self.assertEqual(r.image.mode, "RGBA")
        self.assertEqual(r.name, "a.png")
        self.assertGreater(r.byte_size, 0)

    def test_garbage_raises_decode_error(self) -> None:
        with self.assertRaises(DecodeError):
            decode_raster(b"definitely not an image", name="bad.png")

    def test_encode_png_keeps_alpha(self) -> None:
        img = Image.new("RGBA", (3, 3), (10, 20, 30, 40))
        data = encode_image(img, "png")
        with Image.open(io.BytesIO(data)) as back:
            self.assertEqual(back.format, "PNG")
            self.assertEqual(back.convert("RGBA").getpixel((1, 1)), (10, 20, 30, 40))

    def test_encode_jpeg_flattens(self) -> None:
        img = Image.new("RGBA", (16, 16), (0, 0, 0, 0))
        data = encode_image(img, "jpg")
        self.assertTrue(data.startswith(b"\xff\xd8"))
        with Image.open(io.BytesIO(data)) as back:
            self.assertEqual(back.mode, "RGB")
            r, g, b = back.getpixel((8, 8))
            self.assertGreater(min(r, g, b), 245)


class EditorSessionTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.session = EditorSession()
        self.notifications = 0

        def _count() -> None:
            self.notifications += 1

        self.session.subscribe(_count)

    async def asyncTearDown(self) -> None:
        self.session.close()

    async def test_load_installs_raster_and_notifies(self) -> None:
        raster = await self.session.load_background(_png_bytes((1600, 1200)), name="bg.png")
        self.assertIs(self.session.background.raster, raster)
        self.assertTrue(self.session.has_background)
        self.assertFalse(self.session.can_export_mask)
        self.assertGreaterEqual(self.notifications, 1)
        geom = self.session.display_geometry()
        self.assertEqual(geom.pixel_size, (800, 600))

    async def test_oversize_upload_changes_nothing(self) -> None:
        existing = await self.session.load_background(_png_bytes(), name="bg.png")
        self.session.transform.update(x=5)
        before = self.notifications
        with self.assertRaises(InvalidInputError):
            await self.session.load_background(b"\0" * (11 * 1024 * 1024), name="huge.png", media_type="image/png")
        self.assertIs(self.session.background.raster, existing)
        self.assertTrue(self.session.foreground.is_empty)
        self.assertEqual(self.session.transform.x, 5.0)
        self.assertEqual(self.notifications, before)

    async def test_decode_failure_leaves_slot_empty(self) -> None:
        await self.session.load_foreground(_png_bytes(), name="fg.png")
        with self.assertRaises(DecodeError):
            await self.session.load_foreground(b"garbage bytes", name="fg2.png", media_type="image/png")
        self.assertTrue(self.session.foreground.is_empty)

    async def test_replacing_keeps_transform(self) -> None:
        await self.session.load_foreground(_png_bytes(), name="a.png")
        self.session.transform.update(x=12, rotation=30)
        await self.session.load_foreground(_png_bytes((10, 10)), name="b.png")
        self.assertEqual((self.session.transform.x, self.session.transform.rotation), (12.0, 30.0))
        self.assertEqual(self.session.foreground.raster.name, "b.png")

    async def test_preview_without_background_is_none(self) -> None:
        await self.session.load_foreground(_png_bytes(), name="fg.png")
        self.assertIsNone(self.session.render_preview())
        self.assertIsNone(self.session.display_geometry())

    async def test_preview_renders_at_display_size(self) -> None:
        await self.session.load_background(_png_bytes((1000, 2000)), name="bg.png")
        await self.session.load_foreground(_png_bytes((100, 100), (255, 0, 0, 255)), name="fg.png")
        preview = self.session.render_preview()
        self.assertEqual(preview.size, (300, 600))
        # 100x100 on a 1000x2000 background is 30x30 on the 300x600 preview, centred
        self.assertEqual(preview.getpixel((150, 300)), (255, 0, 0, 255))
        self.assertEqual(preview.getpixel((150, 260)), (0, 128, 255, 255))

    async def test_transform_change_notifies(self) -> None:
        before = self.notifications
        self.session.transform.update(opacity=0.2)
        self.session.transform.reset()
        self.assertEqual(self.notifications, before + 2)


if __name__ == "__main__":
    unittest.main()
