"""Miscellaneous helper functionality."""

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

import logging
logger = logging.getLogger(__name__)


# {{{ integer helpers

def is_power_of_two(n):
    return isinstance(n, (int, np.integer)) and n > 0 and not (n & (n - 1))


def bitlog2(n):
    """Return the base-2 logarithm of the power of two *n*."""
    if not is_power_of_two(n):
        raise ValueError("%r is not a power of 2" % (n,))
    return int(n).bit_length() - 1


def div_ceil(dividend, divisor):
    return -(-dividend // divisor)

# }}}


# {{{ C types <-> dtypes

_DTYPE_TO_CTYPE = {
        np.dtype(np.bool_): "bool",
        np.dtype(np.int8): "signed char",
        np.dtype(np.uint8): "unsigned char",
        np.dtype(np.int16): "short",
        np.dtype(np.uint16): "unsigned short",
        np.dtype(np.int32): "int",
        np.dtype(np.uint32): "unsigned int",
        np.dtype(np.int64): "long long",
        np.dtype(np.uint64): "unsigned long long",
        np.dtype(np.float32): "float",
        np.dtype(np.float64): "double",
        }


def dtype_to_ctype(dtype):
    if dtype is None:
        raise ValueError("dtype may not be None")

    dtype = np.dtype(dtype)
    try:
        return _DTYPE_TO_CTYPE[dtype]
    except KeyError:
        raise ValueError("unable to map dtype '%s'" % dtype) from None

# }}}


# {{{ reference scan

def sequential_scan(mode, op, sequence):
    """Scan *sequence* by a plain left fold, one element at a time.

    Returns a list. Used as the reference the parallel scan is checked
    against.
    """
    from tilescan.operators import ScanMode
    mode = ScanMode(mode)

    result = []
    acc = None
    for i, x in enumerate(sequence):
        if mode is ScanMode.EXCLUSIVE:
            result.append(op.neutral_for(np.asarray(x).dtype) if i == 0 else acc)
        acc = x if i == 0 else op(acc, x)
        if mode is ScanMode.INCLUSIVE:
            result.append(acc)

    return result

# }}}


# {{{ default device

_default_device = None


def _get_env_number(name, convert, default):
    import os
    value = os.environ.get(name)
    if value is None:
        return default

    try:
        return convert(value)
    except ValueError:
        from tilescan.driver import ConfigurationError
        raise ConfigurationError(
                "environment variable %s must be a number, got %r"
                % (name, value)) from None


def make_default_device():
    """Create a device as described by the ``TILESCAN_*`` environment
    variables.

    ``TILESCAN_DEVICE`` selects ``host`` (the default) or ``cuda``. The host
    device further honors ``TILESCAN_WARP_SIZE``, ``TILESCAN_TILE_WORKERS``
    and ``TILESCAN_BARRIER_TIMEOUT``.
    """
    import os
    from tilescan.driver import (ConfigurationError, HostDevice,
            DEFAULT_HOST_WARP_SIZE)

    kind = os.environ.get("TILESCAN_DEVICE", "host").strip().lower()

    if kind == "host":
        device = HostDevice(
                warp_size=_get_env_number(
                    "TILESCAN_WARP_SIZE", int, DEFAULT_HOST_WARP_SIZE),
                max_tile_workers=_get_env_number(
                    "TILESCAN_TILE_WORKERS", int, None),
                barrier_timeout=_get_env_number(
                    "TILESCAN_BARRIER_TIMEOUT", float, 60.))
    elif kind == "cuda":
        from tilescan.cuda import CudaDevice
        device = CudaDevice()
    else:
        raise ConfigurationError(
                "TILESCAN_DEVICE must be 'host' or 'cuda', got %r" % kind)

    logger.debug("created default device %r", device)
    return device


def get_default_device():
    global _default_device
    if _default_device is None:
        _default_device = make_default_device()
    return _default_device


def set_default_device(device):
    """Make *device* the default. Passing *None* resets it, so that the
    next :func:`get_default_device` consults the environment again.
    """
    global _default_device
    _default_device = device

# }}}

# vim: foldmethod=marker
