"""Scan primitive."""

__copyright__ = "Copyright (C) 2026 The tilescan developers"

__license__ = """
Permission is hereby granted, free of charge, to any person
obtaining a copy of this software and associated documentation
files (the "Software"), to deal in the Software without
restriction, including without limitation the rights to use,
copy, modify, merge, publish, distribute, sublicense, and/or sell
copies of the Software, and to permit persons to whom the
Software is furnished to do so, subject to the following
conditions:

The above copyright notice and this permission notice shall be
included in all copies or substantial portions of the Software.

THE SOFTWARE IS PROVIDED "AS IS", WITHOUT WARRANTY OF ANY KIND,
EXPRESS OR IMPLIED, INCLUDING BUT NOT LIMITED TO THE WARRANTIES
OF MERCHANTABILITY, FITNESS FOR A PARTICULAR PURPOSE AND
NONINFRINGEMENT. IN NO EVENT SHALL THE AUTHORS OR COPYRIGHT
HOLDERS BE LIABLE FOR ANY CLAIM, DAMAGES OR OTHER LIABILITY,
WHETHER IN AN ACTION OF CONTRACT, TORT OR OTHERWISE, ARISING
FROM, OUT OF OR IN CONNECTION WITH THE SOFTWARE OR THE USE OR
OTHER DEALINGS IN THE SOFTWARE.
"""

import numpy as np

from tilescan.array import DeviceArray, to_device
from tilescan.driver import CapacityError, ConfigurationError
from tilescan.operators import ScanMode, ScanOperator, plus
from tilescan.tools import div_ceil, is_power_of_two

import logging
logger = logging.getLogger(__name__)


# {{{ argument checking

# strings, bytes and raw records truncate what does not fit
_FIXED_WIDTH_KINDS = "USV"


def _get_mode(mode):
    try:
        return ScanMode(mode)
    except ValueError:
        raise ConfigurationError(
                "scan mode must be 'exclusive' or 'inclusive', got %r"
                % (mode,)) from None


def _check_op(op):
    if not isinstance(op, ScanOperator):
        raise ConfigurationError(
                "expected a ScanOperator, got %s" % type(op).__name__)


def check_tile_size(tile_size, device):
    """Raise :exc:`ConfigurationError` unless *tile_size* is usable on
    *device*.
    """
    warp_size = device.warp_size

    if not is_power_of_two(warp_size):
        raise ConfigurationError(
                "warp size must be an exact power of 2, got %r" % (warp_size,))
    if not isinstance(tile_size, (int, np.integer)):
        raise ConfigurationError(
                "tile size must be an integer, got %r" % (tile_size,))
    if tile_size < warp_size:
        raise ConfigurationError(
                "tile size %d must be at least the size of a single warp (%d)"
                % (tile_size, warp_size))
    if tile_size % warp_size != 0:
        raise ConfigurationError(
                "tile size %d must be an exact multiple of the warp size %d"
                % (tile_size, warp_size))
    if not is_power_of_two(tile_size // warp_size):
        raise ConfigurationError(
                "tile size %d must be a power-of-two multiple of the "
                "warp size %d" % (tile_size, warp_size))
    if tile_size > warp_size*warp_size:
        raise ConfigurationError(
                "tile size %d must be less than or equal to the square of "
                "the warp size %d" % (tile_size, warp_size))
    if tile_size > device.max_tile_size:
        raise ConfigurationError(
                "tile size %d exceeds the maximum of %d supported by %r"
                % (tile_size, device.max_tile_size, device))

# }}}


# {{{ driver

def _scan_level(device, mode, op, neutral, input, output, n, tile_size,
        level=0):
    tile_count = div_ceil(n, tile_size)
    logger.debug("scan level %d: %d elements in %d tiles (%s)",
            level, n, tile_count, mode.value)

    # 1. One total per tile, unless a single tile covers everything
    if tile_count > 1:
        tile_totals = device.mem_alloc(tile_count, input.dtype)
    else:
        tile_totals = None

    # 2. Scan all tiles, storing their inclusive totals
    device.launch_scan_tiles(op, mode, neutral, input, output, tile_totals,
            n, tile_size)

    if tile_totals is None:
        return

    # 3. Exclusive scan of the tile totals, recursing while they span
    # more than one tile
    _scan_level(device, ScanMode.EXCLUSIVE, op, neutral,
            tile_totals, tile_totals, tile_count, tile_size, level+1)

    # 4. Add the scanned tile totals to every element of their tile
    device.launch_add_tile_totals(op, output, tile_totals, n, tile_size)


def scan(mode, op, input, output=None, tile_size=None):
    """Scan the :class:`~tilescan.array.DeviceArray` *input* into *output*.

    :arg mode: a :class:`~tilescan.operators.ScanMode`, or ``"exclusive"`` or
        ``"inclusive"``.
    :arg op: a :class:`~tilescan.operators.ScanOperator`.
    :arg output: a :class:`~tilescan.array.DeviceArray` of the same size,
        dtype and device as *input*. May be *input* itself. If *None*, the
        scan happens in place.
    :arg tile_size: lanes per tile. Must be a power-of-two multiple of the
        device's warp size, and at most its square. Defaults to the
        device's :attr:`~tilescan.driver.Device.default_tile_size`.
    :returns: *output*.
    :raises ConfigurationError: before anything is launched, if the
        arguments violate the constraints above.
    :raises CapacityError: if *output* cannot hold the result, if a
        non-empty *input* is smaller than one warp, or if the device is out
        of memory.
    :raises ExecutionError: if a launch fails. *output* is then undefined.
    """
    mode = _get_mode(mode)
    _check_op(op)

    if output is None:
        output = input

    device = input.device
    if output.device is not device:
        raise ConfigurationError("input and output live on different devices")
    if output.dtype != input.dtype:
        raise ConfigurationError(
                "input and output dtypes differ: %s != %s"
                % (input.dtype, output.dtype))
    if input.dtype.kind in _FIXED_WIDTH_KINDS:
        raise ConfigurationError(
                "dtype %s has a fixed width that combined values may "
                "outgrow, use an object array" % input.dtype)

    if tile_size is None:
        tile_size = device.default_tile_size
    check_tile_size(tile_size, device)

    n = input.size
    if output.size != n:
        raise CapacityError(
                "output has %d elements, input has %d" % (output.size, n))
    if n == 0:
        return output
    if n < device.warp_size:
        raise CapacityError(
                "scan needs at least one warp (%d elements), got %d"
                % (device.warp_size, n))

    _scan_level(device, mode, op, op.neutral_for(input.dtype),
            input.data, output.data, n, tile_size)

    return output


def scan_sequence(mode, op, sequence, tile_size=None, device=None, dtype=None):
    """Scan the host-resident *sequence* and return the result as a
    :class:`numpy.ndarray` of the same length.

    *sequence* is staged into a device buffer, padded with the neutral
    element of *op* up to at least one warp, scanned with :func:`scan`, and
    copied back.
    """
    mode = _get_mode(mode)
    _check_op(op)

    if device is None:
        from tilescan.tools import get_default_device
        device = get_default_device()

    ary = np.asarray(sequence, dtype=dtype)
    if ary.ndim != 1:
        raise ValueError("expected a one-dimensional sequence, got shape %s"
                % (ary.shape,))
    if ary.dtype.kind in _FIXED_WIDTH_KINDS:
        ary = ary.astype(object)

    if tile_size is None:
        tile_size = device.default_tile_size
    check_tile_size(tile_size, device)

    n = ary.size
    if n == 0:
        return ary.copy()

    extent = max(n, device.warp_size)
    if extent != n:
        padded = np.empty(extent, dtype=ary.dtype)
        padded[:n] = ary
        padded[n:] = op.neutral_for(ary.dtype)
        ary = padded

    buf = to_device(ary, device)
    scan(mode, op, buf, buf, tile_size)

    return buf.get()[:n]


def exclusive_scan(sequence, op=plus, tile_size=None, device=None, dtype=None):
    return scan_sequence(ScanMode.EXCLUSIVE, op, sequence, tile_size=tile_size,
            device=device, dtype=dtype)


def inclusive_scan(sequence, op=plus, tile_size=None, device=None, dtype=None):
    return scan_sequence(ScanMode.INCLUSIVE, op, sequence, tile_size=tile_size,
            device=device, dtype=dtype)

# }}}


# {{{ kernel objects

class _ScanKernelBase:
    mode = None

    def __init__(self, op=plus, tile_size=None, device=None):
        _check_op(op)

        if device is None:
            from tilescan.tools import get_default_device
            device = get_default_device()

        if tile_size is None:
            tile_size = device.default_tile_size
        check_tile_size(tile_size, device)

        self.op = op
        self.tile_size = tile_size
        self.device = device

    def __call__(self, input, output=None):
        """Scan *input* into *output* (in place if *None*); return *output*.

        *input* may also be a host array, in which case it is staged to
        this kernel's device first and a new device array is returned.
        """
        if not isinstance(input, DeviceArray):
            input = to_device(input, self.device)
        elif input.device is not self.device:
            raise ConfigurationError(
                    "array lives on %r, kernel was built for %r"
                    % (input.device, self.device))

        return scan(self.mode, self.op, input, output, self.tile_size)


class ExclusiveScanKernel(_ScanKernelBase):
    """A reusable exclusive scan, e.g.::

        knl = ExclusiveScanKernel(plus, tile_size=128)
        result = knl(to_device(np.ones(1000, np.int32))).get()
    """
    mode = ScanMode.EXCLUSIVE


class InclusiveScanKernel(_ScanKernelBase):
    mode = ScanMode.INCLUSIVE

# }}}

# vim: foldmethod=marker
