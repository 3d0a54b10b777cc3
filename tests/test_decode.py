import pytest

from freikino.decode import (
    DEFAULT_POOL_SIZE,
    HW_PIXEL_FORMAT,
    NOPTS_VALUE,
    NS_PER_SECOND,
    SEEK_LATE_MARGIN_NS,
    TexturePool,
    choose_pixel_format,
    is_late_after_seek,
    rescale_ns,
)


class _Texture:
    def __init__(self, width, height, fmt):
        self.width = width
        self.height = height
        self.fmt = fmt


def _counting_allocator():
    made = []

    def allocate(width, height, fmt):
        texture = _Texture(width, height, fmt)
        made.append(texture)
        return texture

    return allocate, made


# ---------------------------------------------------------------- rescale_ns


def test_rescale_missing_timestamp_is_zero():
    assert rescale_ns(NOPTS_VALUE, 1, 90000) == 0
    assert rescale_ns(None, 1, 1000) == 0


def test_rescale_identity_at_nanosecond_base():
    for value in (0, 1, 12345, -987):
        assert rescale_ns(value, 1, NS_PER_SECOND) == value


def test_rescale_one_second_of_ticks():
    assert rescale_ns(90000, 1, 90000) == NS_PER_SECOND


def test_rescale_is_symmetric_for_negative_values():
    for value in (1, 7, 100, 33333):
        assert rescale_ns(-value, 1, 3) == -rescale_ns(value, 1, 3)


def test_rescale_rounds_to_nearest():
    assert rescale_ns(1, 1, 3) == 333333333
    assert rescale_ns(2, 1, 3) == 666666667


def test_rescale_zero_denominator_raises():
    with pytest.raises(ValueError):
        rescale_ns(5, 1, 0)


# ------------------------------------------------------- is_late_after_seek


def test_no_seek_never_late():
    assert is_late_after_seek(0) is False
    assert is_late_after_seek(-(10**15), None) is False


def test_late_boundary_is_strict():
    target = 5 * NS_PER_SECOND
    assert is_late_after_seek(target - SEEK_LATE_MARGIN_NS - 1, target) is True
    assert is_late_after_seek(target - SEEK_LATE_MARGIN_NS, target) is False
    assert is_late_after_seek(target, target) is False


# ------------------------------------------------------ choose_pixel_format


def _hw(fmt):
    return fmt in {"d3d11", "dxva2_vld", "cuda"}


def test_prefers_hardware_surface():
    assert choose_pixel_format(["yuv420p", "d3d11"], _hw) == HW_PIXEL_FORMAT


def test_falls_back_to_first_software_format():
    assert choose_pixel_format(["dxva2_vld", "cuda", "nv12", "yuv420p"], _hw) == "nv12"


def test_all_hardware_returns_first():
    assert choose_pixel_format(["cuda", "dxva2_vld"], _hw) == "cuda"


def test_empty_offer_raises():
    with pytest.raises(ValueError):
        choose_pixel_format([], _hw)


# ---------------------------------------------------------------- TexturePool


def test_pool_allocates_lazily_and_wraps():
    allocate, made = _counting_allocator()
    pool = TexturePool(allocate)
    first_round = [pool.next_texture(64, 32, "nv12") for _ in range(DEFAULT_POOL_SIZE)]
    assert len(made) == DEFAULT_POOL_SIZE
    assert len({id(t) for t in first_round}) == DEFAULT_POOL_SIZE
    again = pool.next_texture(64, 32, "nv12")
    assert again is first_round[0]
    assert len(made) == DEFAULT_POOL_SIZE


def test_pool_reallocates_on_format_or_size_change():
    allocate, made = _counting_allocator()
    pool = TexturePool(allocate, size=2)
    a = pool.next_texture(64, 32, "nv12")
    b = pool.next_texture(64, 32, "p010")
    assert b is not a
    assert (b.width, b.height, b.fmt) == (64, 32, "p010")
    c = pool.next_texture(128, 32, "p010")
    assert (c.width, c.height) == (128, 32)
    assert len(made) == 3


def test_pool_reuse_keeps_requested_dimensions():
    allocate, made = _counting_allocator()
    pool = TexturePool(allocate, size=3)
    textures = [pool.next_texture(8, 4, "nv12") for _ in range(7)]
    assert all((t.width, t.height, t.fmt) == (8, 4, "nv12") for t in textures)
    assert len(made) == 3
    assert textures[6] is textures[3] is textures[0]


def test_pool_rejects_zero_size():
    allocate, _ = _counting_allocator()
    with pytest.raises(ValueError):
        TexturePool(allocate, size=0)