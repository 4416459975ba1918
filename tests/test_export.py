from __future__ import annotations

import io
import os
import re
import stat
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from PIL import Image

from core.errors import ExportError, RenderUnavailableError
from core.export import ExportFormat, export_both, export_composite, export_filename, export_mask
from core.io import write_file_atomic
from core.session import EditorSession


def _png_bytes(size, color) -> bytes:
    buf = io.BytesIO()
    Image.new("RGBA", size, color).save(buf, format="PNG")
    return buf.getvalue()


class ExportFormatTests(unittest.TestCase):
    def test_parse(self) -> None:
        self.assertIs(ExportFormat.parse("PNG"), ExportFormat.PNG)
        self.assertIs(ExportFormat.parse("jpeg"), ExportFormat.JPEG)
        self.assertIs(ExportFormat.parse(".jpg"), ExportFormat.JPEG)
        self.assertIs(ExportFormat.parse(ExportFormat.PNG), ExportFormat.PNG)
        with self.assertRaises(ValueError):
            ExportFormat.parse("gif")

    def test_lossless(self) -> None:
        self.assertTrue(ExportFormat.PNG.lossless)
        self.assertFalse(ExportFormat.JPEG.lossless)

    def test_filename(self) -> None:
        self.assertEqual(export_filename("composite", ExportFormat.JPEG, 1700000000123), "composite_1700000000123.jpg")
        self.assertEqual(export_filename("mask", ExportFormat.PNG, 5), "mask_5.png")


class ExportTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.out = Path(self._tmp.name) / "out"
        self.session = EditorSession()
        await self.session.load_background(_png_bytes((1600, 1200), (0, 0, 255, 255)), name="bg.png")

    async def asyncTearDown(self) -> None:
        self.session.close()
        self._tmp.cleanup()

    async def test_composite_is_written_at_native_size(self) -> None:
        result = await export_composite(self.session, self.out)
        self.assertEqual(len(result.paths), 1)
        path = result.paths[0]
        self.assertRegex(path.name, r"^composite_\d+\.png$")
        with Image.open(path) as img:
            self.assertEqual(img.size, (1600, 1200))

    async def test_composite_as_jpeg(self) -> None:
        result = await export_composite(self.session, self.out, "jpg")
        path = result.paths[0]
        self.assertTrue(path.name.endswith(".jpg"))
        self.assertTrue(path.read_bytes().startswith(b"\xff\xd8"))

    async def test_mask_requires_foreground(self) -> None:
        with self.assertRaises(RenderUnavailableError):
            await export_mask(self.session, self.out)
        with self.assertRaises(RenderUnavailableError):
            await export_both(self.session, self.out)
        self.assertFalse(self.out.exists())

    async def test_composite_requires_background(self) -> None:
        empty = EditorSession()
        with self.assertRaises(RenderUnavailableError):
            await export_composite(empty, self.out)

    async def test_both_share_stamp_and_placement(self) -> None:
        await self.session.load_foreground(_png_bytes((100, 100), (255, 0, 0, 255)), name="fg.png")
        # display offset (100, 50) on an 800x600 preview is (200, 100) at native size
        self.session.transform.update(x=100, y=50)
        result = await export_both(self.session, self.out)
        self.assertEqual(len(result.paths), 2)
        names = sorted(p.name for p in result.paths)
        stamps = {re.search(r"_(\d+)\.", n).group(1) for n in names}
        self.assertEqual(len(stamps), 1)

        composite = next(p for p in result.paths if p.name.startswith("composite_"))
        mask = next(p for p in result.paths if p.name.startswith("mask_"))
        self.assertTrue(mask.name.endswith(".png"))
        with Image.open(mask) as m, Image.open(composite) as c:
            self.assertEqual(m.size, (1600, 1200))
            m = m.convert("RGB")
            c = c.convert("RGBA")
            self.assertEqual(m.getpixel((1000, 700)), (255, 255, 255))
            self.assertEqual(m.getpixel((800, 600)), (0, 0, 0))
            self.assertEqual(c.getpixel((1000, 700)), (255, 0, 0, 255))
            self.assertEqual(c.getpixel((800, 600)), (0, 0, 255, 255))

    async def test_failed_part_leaves_nothing_on_disk(self) -> None:
        await self.session.load_foreground(_png_bytes((10, 10), (255, 0, 0, 255)), name="fg.png")
        with mock.patch("core.export.render_source_mask", side_effect=ValueError("boom")):
            with self.assertRaises(ExportError) as ctx:
                await export_both(self.session, self.out)
        self.assertEqual(ctx.exception.part, "mask")
        self.assertFalse(self.out.exists() and any(self.out.iterdir()))

    async def test_failed_second_write_removes_first_file(self) -> None:
        await self.session.load_foreground(_png_bytes((10, 10), (255, 0, 0, 255)), name="fg.png")

        def _fail_mask(path, data):
            if Path(path).name.startswith("mask_"):
                raise ExportError(Path(path).name, "disk full")
            write_file_atomic(path, data)

        with mock.patch("core.export.write_file_atomic", side_effect=_fail_mask):
            with self.assertRaises(ExportError) as ctx:
                await export_both(self.session, self.out)
        self.assertEqual(ctx.exception.part, "mask")
        self.assertEqual(ctx.exception.reason, "disk full")
        self.assertEqual(list(self.out.iterdir()), [])

    async def test_unexpected_render_failure_is_export_error(self) -> None:
        with mock.patch("core.export.render_source_composite", side_effect=MemoryError("out of memory")):
            with self.assertRaises(ExportError) as ctx:
                await export_composite(self.session, self.out)
        self.assertEqual(ctx.exception.part, "composite")
        self.assertFalse(self.out.exists())

    @unittest.skipIf(os.name == "nt", "POSIX permissions")
    async def test_exported_files_follow_umask(self) -> None:
        old = os.umask(0o022)
        try:
            result = await export_composite(self.session, self.out)
        finally:
            os.umask(old)
        self.assertEqual(stat.S_IMODE(result.paths[0].stat().st_mode), 0o644)

    async def test_unwritable_destination(self) -> None:
        blocker = Path(self._tmp.name) / "not_a_dir"
        blocker.write_bytes(b"x")
        with self.assertRaises(ExportError):
            await export_composite(self.session, blocker)

    async def test_export_does_not_touch_session(self) -> None:
        await self.session.load_foreground(_png_bytes((10, 10), (255, 0, 0, 255)), name="fg.png")
        self.session.transform.update(rotation=45)
        before = self.session.transform.as_dict()
        fg = self.session.foreground.raster
        await export_both(self.session, self.out, ExportFormat.JPEG)
        self.assertEqual(self.session.transform.as_dict(), before)
        self.assertIs(self.session.foreground.raster, fg)


if __name__ == "__main__":
    unittest.main()
