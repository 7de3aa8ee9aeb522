from __future__ import annotations

import contextlib
import io
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

import numpy as np
from PIL import Image

import batch_combine
import combine
import profile_combine
from combine import (
    aspect_ratio,
    check_combinable,
    combine_images,
    save_image,
    stack_images,
)
from edge_signature import EdgeConfig
from sequence import MAX_SEARCH_IMAGES


def tall_picture(height: int = 240, width: int = 120) -> np.ndarray:
    """RGB picture whose rows change smoothly from top to bottom."""
    pixels = np.zeros((height, width, 3), dtype=np.uint8)
    pixels[:, :, 0] = np.arange(height, dtype=np.uint8)[:, None]
    pixels[:, :, 1] = (np.arange(width) * 2).astype(np.uint8)[None, :]
    return pixels


def slice_strips(pixels: np.ndarray, count: int) -> list[Image.Image]:
    step = pixels.shape[0] // count
    return [Image.fromarray(pixels[i * step:(i + 1) * step]) for i in range(count)]


class TestEligibility(unittest.TestCase):
    def test_aspect_ratio(self) -> None:
        self.assertEqual(aspect_ratio(400, 200), 2.0)
        with self.assertRaises(ValueError):
            aspect_ratio(10, 0)

    def test_similar_landscape_images_pass(self) -> None:
        ok, _ = check_combinable([(400, 300), (420, 300), (400, 300), (390, 300)])
        self.assertTrue(ok)

    def test_portrait_image_fails(self) -> None:
        ok, reason = check_combinable([(400, 300), (300, 400)])
        self.assertFalse(ok)
        self.assertIn('Image 2', reason)

    def test_square_image_is_not_horizontal(self) -> None:
        ok, _ = check_combinable([(300, 300), (300, 300)])
        self.assertFalse(ok)

    def test_ratio_outside_tolerance_fails(self) -> None:
        sizes = [(400, 300), (500, 300)]
        self.assertFalse(check_combinable(sizes)[0])
        self.assertTrue(check_combinable(sizes, tolerance=0.3)[0])

    def test_ratio_diagnostics_are_logged(self) -> None:
        with self.assertLogs('combine', level='DEBUG') as logs:
            check_combinable([(400, 200), (420, 200)])
        self.assertIn('Image 2: ratio=2.100, diff=5.0%', logs.output[-1])

    def test_needs_two_images(self) -> None:
        self.assertFalse(check_combinable([(400, 300)])[0])
        self.assertFalse(check_combinable([])[0])


class TestStacking(unittest.TestCase):
    def test_stacks_and_scales_to_widest(self) -> None:
        red = Image.new('RGB', (100, 50), (255, 0, 0))
        blue = Image.new('RGB', (50, 25), (0, 0, 255))
        stacked = stack_images([red, blue])

        self.assertEqual(stacked.size, (100, 100))
        self.assertEqual(stacked.getpixel((10, 10)), (255, 0, 0, 255))
        self.assertEqual(stacked.getpixel((10, 90)), (0, 0, 255, 255))

    def test_no_images(self) -> None:
        with self.assertRaises(ValueError):
            stack_images([])

    def test_save_jpeg_drops_alpha(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / 'out.jpg'
            save_image(Image.new('RGBA', (8, 8), (1, 2, 3, 255)), path)
            with Image.open(path) as img:
                self.assertEqual(img.mode, 'RGB')


class TestCombineImages(unittest.TestCase):
    def test_recovers_shuffled_strips(self) -> None:
        picture = tall_picture()
        strips = slice_strips(picture, 4)
        shuffled = [strips[2], strips[0], strips[3], strips[1]]

        result = combine_images(shuffled)

        self.assertEqual(result.sequence.order, [1, 3, 0, 2])
        self.assertEqual(result.sequence.method, 'permutation')
        np.testing.assert_array_equal(np.array(result.image)[:, :, :3], picture)

    def test_letterboxed_ends_anchor_the_order(self) -> None:
        picture = tall_picture()
        picture[:5] = 0
        picture[-5:] = 0
        strips = slice_strips(picture, 3)
        shuffled = [strips[1], strips[2], strips[0]]

        result = combine_images(shuffled, EdgeConfig())

        self.assertEqual(result.sequence.order, [2, 0, 1])
        self.assertEqual(result.sequence.method, 'anchored')


class TestCommandLine(unittest.TestCase):
    def _write_strips(self, directory: Path, order: list[int]) -> list[Path]:
        strips = slice_strips(tall_picture(), 4)
        directory.mkdir(parents=True, exist_ok=True)
        paths = []
        for name, idx in zip('abcd', order):
            path = directory / f'{name}.png'
            strips[idx].save(path)
            paths.append(path)
        return paths

    def test_combine_main_writes_output(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            paths = self._write_strips(Path(tmp) / 'in', [3, 1, 0, 2])
            output = Path(tmp) / 'out' / 'combined.png'
            argv = ['combine.py', *map(str, paths), '--output', str(output)]

            stdout = io.StringIO()
            with patch('sys.argv', argv), contextlib.redirect_stdout(stdout):
                combine.main()

            self.assertTrue(output.exists())
            self.assertIn('Order: [3, 2, 4, 1]', stdout.getvalue())
            with Image.open(output) as img:
                self.assertEqual(img.size, (120, 240))

    def test_combine_main_rejects_ineligible_images(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            portrait = Path(tmp) / 'p.png'
            Image.new('RGB', (30, 60)).save(portrait)
            argv = ['combine.py', str(portrait), str(portrait), '-o', str(Path(tmp) / 'o.png')]

            with patch('sys.argv', argv), contextlib.redirect_stderr(io.StringIO()):
                with self.assertRaises(SystemExit) as ctx:
                    combine.main()
            self.assertEqual(ctx.exception.code, 2)

    def test_combine_main_reports_oversized_search(self) -> None:
        rng = np.random.default_rng(9)
        with tempfile.TemporaryDirectory() as tmp:
            paths = []
            for i in range(MAX_SEARCH_IMAGES + 1):
                path = Path(tmp) / f'noise{i}.png'
                Image.fromarray(rng.integers(0, 256, size=(20, 40, 3), dtype=np.uint8)).save(path)
                paths.append(str(path))
            output = Path(tmp) / 'o.png'
            argv = ['combine.py', *paths, '-o', str(output)]

            stderr = io.StringIO()
            with patch('sys.argv', argv), contextlib.redirect_stderr(stderr):
                with self.assertRaises(SystemExit) as ctx:
                    combine.main()
            self.assertEqual(ctx.exception.code, 1)
            self.assertIn('Cannot search orderings', stderr.getvalue())
            self.assertFalse(output.exists())

    def test_combine_main_reports_unknown_output_format(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            paths = self._write_strips(Path(tmp) / 'in', [0, 1, 2, 3])
            argv = ['combine.py', *map(str, paths), '-o', str(Path(tmp) / 'out.notaformat')]

            stderr = io.StringIO()
            with patch('sys.argv', argv), contextlib.redirect_stderr(stderr):
                with self.assertRaises(SystemExit) as ctx:
                    combine.main()
            self.assertEqual(ctx.exception.code, 1)
            self.assertIn('Error combining images', stderr.getvalue())

    def test_batch_combines_groups_and_skips_ineligible(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp) / 'groups'
            self._write_strips(root / 'post1', [1, 0, 3, 2])
            portrait_dir = root / 'post2'
            portrait_dir.mkdir()
            for name in ('x.png', 'y.png'):
                Image.new('RGB', (30, 60)).save(portrait_dir / name)
            (root / 'empty').mkdir()

            output = Path(tmp) / 'out'
            argv = ['batch_combine.py', '--input', str(root), '--output', str(output)]
            stdout = io.StringIO()
            with patch('sys.argv', argv), contextlib.redirect_stdout(stdout):
                batch_combine.main()

            self.assertTrue((output / 'post1-combined.png').exists())
            self.assertFalse((output / 'post2-combined.png').exists())
            self.assertIn('Completed: 1/2', stdout.getvalue())
            self.assertIn('Skipped (1): post2', stdout.getvalue())

    def test_profile_group_reports_every_stage(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            paths = self._write_strips(Path(tmp) / 'group', [0, 1, 2, 3])
            with contextlib.redirect_stdout(io.StringIO()):
                timings = profile_combine.profile_group(paths)

            self.assertEqual(
                set(timings), {'load', 'edge_signatures', 'sequence', 'stack', 'total'}
            )
            self.assertAlmostEqual(
                timings['total'],
                sum(t for stage, t in timings.items() if stage != 'total'),
            )

    def test_batch_missing_input(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            argv = ['batch_combine.py', '-i', str(Path(tmp) / 'nope'), '-o', tmp]
            with patch('sys.argv', argv), contextlib.redirect_stderr(io.StringIO()):
                with self.assertRaises(SystemExit) as ctx:
                    batch_combine.main()
            self.assertEqual(ctx.exception.code, 2)


if __name__ == '__main__':
    unittest.main()
