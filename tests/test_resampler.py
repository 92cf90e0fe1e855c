import io
import math

import numpy as np
import torch

from latlong_downsample.modules.equirectangular_resampler import (
    EquirectangularResampler, GeometryError, ResampleMethod, downsample_image, gauss,
)
from latlong_downsample.modules.pixel_buffer import EquirectangularImage
from latlong_downsample.modules.ppm_codec import decode_ppm


METHODS = [m.value for m in ResampleMethod]


def make_random_image(w, h, seed=0, name="input.ppm"):
    rng = np.random.default_rng(seed)
    return EquirectangularImage(name, w, h, rng.random((h, w, 3), dtype=np.float32))


def make_smooth_image(w, h):
    # Low-frequency pattern, continuous across the seam
    u = (np.arange(w) + 0.5) / w
    v = (np.arange(h) + 0.5) / h
    uu, vv = np.meshgrid(u, v)
    img = np.stack([
        0.5 + 0.4 * np.sin(2 * np.pi * uu) * np.sin(np.pi * vv),
        0.5 + 0.4 * np.cos(np.pi * vv),
        0.5 + 0.2 * np.cos(2 * np.pi * uu),
    ], axis=-1).astype(np.float32)
    return EquirectangularImage("smooth.ppm", w, h, img)


def red_blue_image():
    # 4x2, columns alternate pure red and pure blue
    row = [255, 0, 0, 0, 0, 255] * 2
    data = b"P6 4 2 255\n" + bytes(row * 2)
    return decode_ppm(io.BytesIO(data), "redblue.ppm")


def naive_box(pixels, ow, oh):
    ih, iw, c = pixels.shape
    out = np.zeros((oh, ow, c))
    for oj in range(oh):
        ij0, ij1 = ih * oj // oh, ih * (oj + 1) // oh
        for oi in range(ow):
            ii0, ii1 = iw * oi // ow, iw * (oi + 1) // ow
            acc = np.zeros(c)
            total = 0.0
            for ij in range(ij0, ij1):
                weight = math.sin(math.pi * (ij + 0.5) / ih)
                for ii in range(ii0, ii1):
                    acc += weight * pixels[ij, ii]
                    total += weight
            out[oj, oi] = acc / total
    return out


def test_uniform_color_invariance():
    color = np.array([0.2, 0.5, 0.8], dtype=np.float32)
    for iw, ih, ow, oh in [(16, 8, 4, 2), (12, 6, 5, 3), (16, 8, 16, 8), (40, 20, 7, 3), (9, 9, 1, 1)]:
        buffer = np.broadcast_to(color, (ih, iw, 3)).copy()
        image = EquirectangularImage("flat.ppm", iw, ih, buffer)
        for method in METHODS:
            out = downsample_image(image, ow, oh, method=method)
            assert (out.width, out.height) == (ow, oh)
            if not np.allclose(out.buffer, color, atol=1e-5):
                raise AssertionError(f"{method} {iw}x{ih}->{ow}x{oh} changed a uniform image")


def test_nearest_matches_integer_division():
    image = make_random_image(10, 6, seed=1)
    out = downsample_image(image, 4, 3, method="nearest")
    for oj in range(3):
        for oi in range(4):
            assert np.array_equal(out.buffer[oj, oi], image.buffer[6 * oj // 3, 10 * oi // 4])


def test_box_matches_direct_accumulation():
    image = make_random_image(13, 7, seed=2)
    for ow, oh in [(5, 3), (13, 7), (1, 1), (6, 2)]:
        out = downsample_image(image, ow, oh, method="box")
        expected = naive_box(image.buffer.astype(np.float64), ow, oh)
        assert np.allclose(out.buffer, expected, atol=1e-5), f"box {ow}x{oh}"


def test_box_weight_normalization():
    weights = EquirectangularResampler.box_row_weights(4, 1, 3)
    expected = math.sin(math.pi * 1.5 / 4) + math.sin(math.pi * 2.5 / 4)
    assert len(weights) == 2
    assert abs(weights.sum() - expected) < 1e-12

    # 4x4 -> 2x2: output (0, 0) covers rows [0, 2) and columns [0, 2)
    total = EquirectangularResampler.box_weight_total(4, 4, 2, 2, 0, 0)
    assert abs(total - 2 * (math.sin(math.pi * 0.5 / 4) + math.sin(math.pi * 1.5 / 4))) < 1e-12


def test_box_weights_pole_rows_less():
    image = EquirectangularImage("rows.ppm", 2, 4, np.zeros((4, 2, 3), dtype=np.float32))
    image.buffer[0] = 1.0  # pole row
    out = downsample_image(image, 1, 2, method="box")
    # pole row weighs sin(pi/8) against sin(3pi/8) for the next row
    expected = math.sin(math.pi / 8) / (math.sin(math.pi / 8) + math.sin(3 * math.pi / 8))
    assert np.allclose(out.buffer[0, 0], expected, atol=1e-6)
    assert np.allclose(out.buffer[1, 0], 0.0)


def test_red_blue_scenario():
    image = red_blue_image()
    red = np.array([1.0, 0.0, 0.0])
    blue = np.array([0.0, 0.0, 1.0])

    nearest = downsample_image(image, 2, 2, method="nearest").buffer
    for px in nearest.reshape(-1, 3):
        assert np.allclose(px, red) or np.allclose(px, blue), f"nearest blended: {px}"

    for method in ("box", "geodesic"):
        out = downsample_image(image, 2, 2, method=method).buffer.reshape(-1, 3)
        blended = (out[:, 0] > 1e-3) & (out[:, 2] > 1e-3)
        assert blended.any(), f"{method} produced only pure colors"

    box = downsample_image(image, 2, 2, method="box").buffer
    assert np.allclose(box, [0.5, 0.0, 0.5], atol=1e-6)


def test_gauss_kernel():
    for x, y in [(0, 0), (3, -4), (100, 7)]:
        assert gauss(x, y, 0) == 1.0
    assert gauss(0, 0, 3) > gauss(1, 0, 3) > gauss(2, 2, 3) > 0.0
    assert abs(gauss(1, 2, 3) - gauss(-2, 1, 3)) < 1e-15
    # sigma = 1 at r = 3
    assert abs(gauss(0, 0, 3) - 1.0 / (2.0 * math.pi)) < 1e-15


def test_kernel_parameters():
    R = EquirectangularResampler
    assert R.latitude_stretch(0.0) == 8.0
    assert abs(R.latitude_stretch(0.5) - 1.0) < 1e-12
    assert abs(R.latitude_stretch(1.0 / 6.0) - 2.0) < 1e-12
    assert R.filter_radius(1024, 512, 256, 128) == 2
    assert R.filter_radius(1024, 512, 1000, 500) == 0
    assert R.filter_radius(100, 50, 10, 50) == 5
    assert R.angular_step(1024, 512) == 1.0 / 512
    assert R.angular_step(1024, 256) == 1.0 / 512
    assert R.kernel_extent(2, 8.0) == 16
    assert R.kernel_extent(2, 1.25) == 3

    ai, aj, weights = R.kernel_taps(0)
    assert list(ai) == [0.0] and list(aj) == [0.0] and list(weights) == [1.0]
    ai, aj, weights = R.kernel_taps(2)
    assert len(ai) == len(aj) == len(weights) == 25
    assert weights.sum() > 0.0


def test_geodesic_footprint_in_bounds():
    iw, ih, ow, oh = 64, 32, 8, 4
    for oj in range(oh):
        for oi in range(ow):
            ii, ij, weights = EquirectangularResampler.geodesic_footprint(iw, ih, ow, oh, oi, oj)
            assert ii.shape == ij.shape == weights.shape
            assert ii.min() >= 0 and ii.max() < iw
            assert ij.min() >= 0 and ij.max() < ih
            assert weights.sum() > 0.0


def test_geodesic_is_convex_combination():
    image = make_random_image(32, 16, seed=4)
    ow, oh = 8, 4
    out = downsample_image(image, ow, oh, method="geodesic").buffer
    for oj in range(oh):
        for oi in range(ow):
            ii, ij, weights = EquirectangularResampler.geodesic_footprint(32, 16, ow, oh, oi, oj)
            samples = image.buffer[ij, ii].astype(np.float64)
            expected = (weights[:, None] * samples).sum(axis=0) / weights.sum()
            assert np.allclose(out[oj, oi], expected, atol=1e-5)
            assert np.all(out[oj, oi] >= samples.min(axis=0) - 1e-6)
            assert np.all(out[oj, oi] <= samples.max(axis=0) + 1e-6)


def test_geodesic_kernel_grows_toward_poles():
    iw, ih, ow, oh = 64, 32, 16, 8
    equator = EquirectangularResampler.geodesic_footprint(iw, ih, ow, oh, 0, oh // 2)[2]
    pole = EquirectangularResampler.geodesic_footprint(iw, ih, ow, oh, 0, 0)[2]
    assert len(pole) > len(equator)


def test_geodesic_column_chunks_agree():
    image = make_smooth_image(24, 12)
    R = EquirectangularResampler
    full = R.resample_array(image.buffer, 6, 3, method="geodesic")
    chunked = np.concatenate([band for _, band in R.geodesic_bands(image.buffer, 6, 3, max_elements=1)])
    assert chunked.shape == full.shape
    assert np.allclose(full, chunked, atol=1e-6)
    assert R.calculate_column_chunk(6, 4, max_elements=1) == 1
    assert R.calculate_column_chunk(6, 0) == 6


def test_torch_backend_matches_numpy():
    image = make_smooth_image(48, 24)
    expected = EquirectangularResampler.resample_array(image.buffer, 12, 6, method="geodesic")
    tensor = torch.from_numpy(image.buffer.copy())
    got = EquirectangularResampler.torch_geodesic_gaussian(tensor, 12, 6)
    assert tuple(got.shape) == (6, 12, 3)
    assert got.dtype == torch.float32
    assert np.allclose(got.numpy(), expected, atol=1e-6)


def test_extra_channels_resample():
    alpha = np.ones((8, 16, 1), dtype=np.float32)
    for method in METHODS:
        out = EquirectangularResampler.resample_array(alpha, 4, 2, method=method)
        assert out.shape == (2, 4, 1)
        assert np.allclose(out, 1.0, atol=1e-6)


def test_dimension_guard():
    image = make_random_image(8, 4)
    for ow, oh in [(9, 4), (8, 5), (0, 2), (4, 0)]:
        try:
            downsample_image(image, ow, oh)
        except GeometryError:
            pass
        else:
            raise AssertionError(f"{ow}x{oh} should be rejected for an 8x4 input")


def test_input_is_not_mutated():
    image = make_random_image(16, 8, seed=6)
    before = image.buffer.copy()
    for method in METHODS:
        downsample_image(image, 5, 3, method=method)
    assert np.array_equal(image.buffer, before)

    view = image.read_only()
    try:
        view[0, 0] = 0.0
    except ValueError:
        pass
    else:
        raise AssertionError("read-only view accepted a write")


def test_unknown_method_and_backend():
    image = make_random_image(8, 4)
    for kwargs in ({"method": "bilinear"}, {"backend": "tpu"}):
        try:
            downsample_image(image, 4, 2, **kwargs)
        except ValueError:
            pass
        else:
            raise AssertionError(f"{kwargs} should be rejected")


if __name__ == '__main__':
    for name, fn in list(globals().items()):
        if name.startswith('test_'):
            fn()
    print('All resampler tests passed.')
