"""Flat arrays resident on a scan device."""

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

import numbers

import numpy as np


class DeviceArray:
    """A one-dimensional array of fixed extent living on a device.

    The device's own storage object is available as :attr:`data`; for the
    host device this is a :class:`numpy.ndarray`, for the CUDA device a
    :class:`pycuda.gpuarray.GPUArray`.
    """

    def __init__(self, size, dtype, device=None, data=None):
        if device is None:
            from tilescan.tools import get_default_device
            device = get_default_device()

        if isinstance(size, np.ndarray):
            size = size.item()
        if isinstance(size, tuple):
            if len(size) != 1:
                raise ValueError("device arrays are one-dimensional, "
                        "got shape %s" % (size,))
            size, = size
        if not isinstance(size, numbers.Integral) or size < 0:
            raise ValueError("invalid size: %r" % (size,))

        self.device = device
        self.dtype = np.dtype(dtype)
        self.size = int(size)
        self.shape = (self.size,)
        self.nbytes = self.dtype.itemsize * self.size

        if data is None:
            data = device.mem_alloc(self.size, self.dtype)
        self.data = data

    def __len__(self):
        return self.size

    def __repr__(self):
        return "<DeviceArray of %d %s on %r>" % (self.size, self.dtype,
                self.device)

    def set(self, ary):
        ary = np.asarray(ary)
        if ary.size != self.size:
            raise ValueError("ary and self must be the same size")
        if ary.dtype != self.dtype:
            raise ValueError("ary and self must have the same dtype")

        if self.size:
            self.device.memcpy_htod(self.data, ary.reshape(self.shape))

    def get(self, ary=None):
        if ary is None:
            if not self.size:
                return np.empty(self.shape, self.dtype)
            return self.device.memcpy_dtoh(self.data)

        if self.size != ary.size:
            raise ValueError("self and ary must be the same size")
        if self.dtype != ary.dtype:
            raise TypeError("self and ary must have the same dtype")

        if self.size:
            self.device.memcpy_dtoh(self.data, ary)
        return ary

    def copy(self):
        new = DeviceArray(self.size, self.dtype, self.device)
        if self.size:
            new.set(self.get())
        return new


# {{{ creation helpers

def to_device(ary, device=None):
    """Copy the one-dimensional host array *ary* to a new :class:`DeviceArray`."""
    ary = np.asarray(ary)
    if ary.ndim != 1:
        raise ValueError("expected a one-dimensional array, got shape %s"
                % (ary.shape,))

    result = DeviceArray(ary.shape, ary.dtype, device)
    result.set(ary)
    return result


empty = DeviceArray


def empty_like(other_ary, dtype=None):
    if dtype is None:
        dtype = other_ary.dtype
    return DeviceArray(other_ary.size, dtype, other_ary.device)


def zeros(size, dtype=np.float64, device=None):
    """Returns an array of the given size and dtype filled with 0's."""
    result = DeviceArray(size, dtype, device)
    result.set(np.zeros(result.shape, result.dtype))
    return result

# }}}

# vim: foldmethod=marker
