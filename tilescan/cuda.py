"""CUDA execution substrate, built on PyCUDA."""

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
from mako.template import Template
from pytools import Record, memoize_method

from tilescan.driver import (Device, CapacityError, ConfigurationError,
        ExecutionError)
from tilescan.operators import ScanMode
from tilescan.tools import bitlog2, div_ceil, dtype_to_ctype

import logging
logger = logging.getLogger(__name__)


# {{{ kernel source

SCAN_SOURCE = """//CL//
#define WARP_SIZE ${warp_size}
#define LOG2_WARP_SIZE ${log2_warp_size}
#define TILE_SIZE ${tile_size}

#define TILESCAN_INFINITY (1./0)
#define SCAN_EXPR(a, b) (${scan_expr})
#define NEUTRAL ((scan_type) (${neutral}))

typedef ${scan_ctype} scan_type;
typedef long long index_type;

__device__ scan_type combine(scan_type a, scan_type b)
{
    return SCAN_EXPR(a, b);
}

// Leaves the inclusive scan of the warp in tile_data.
__device__ scan_type scan_warp(volatile scan_type *tile_data, int idx,
    bool inclusive)
{
    const int widx = idx & (WARP_SIZE - 1);
    scan_type partner = NEUTRAL;

% for offset in offsets:
    if (widx >= ${offset})
        partner = tile_data[idx - ${offset}];
    __syncwarp();
    if (widx >= ${offset})
        tile_data[idx] = combine(partner, tile_data[idx]);
    __syncwarp();

% endfor
    if (inclusive)
        return tile_data[idx];
    return (widx > 0) ? tile_data[idx - 1] : NEUTRAL;
}

__device__ scan_type scan_tile(volatile scan_type *tile_data, bool inclusive)
{
    const int lidx = threadIdx.x;
    const int warp_id = lidx >> LOG2_WARP_SIZE;

    scan_type val = scan_warp(tile_data, lidx, inclusive);
    const scan_type warp_prefix = tile_data[lidx];
    __syncthreads();

    if ((lidx & (WARP_SIZE - 1)) == WARP_SIZE - 1)
        tile_data[warp_id] = warp_prefix;
    __syncthreads();

    if (warp_id == 0)
        scan_warp(tile_data, lidx, true);
    __syncthreads();

    if (warp_id > 0)
        val = combine(tile_data[warp_id - 1], val);
    __syncthreads();

    tile_data[lidx] = val;
    __syncthreads();
    return val;
}

% for with_totals in [False, True]:
extern "C" __global__ void ${name_prefix}_scan_tiles${"_with_totals" if with_totals else ""}(
    const scan_type *input, scan_type *output,
% if with_totals:
    scan_type *tile_totals,
% endif
    index_type n)
{
    __shared__ scan_type tile_data[TILE_SIZE];
    const index_type gidx = (index_type) blockIdx.x * TILE_SIZE + threadIdx.x;

    const scan_type x = (gidx < n) ? input[gidx] : NEUTRAL;
    tile_data[threadIdx.x] = x;
    __syncthreads();

    const scan_type val = scan_tile(tile_data, ${"true" if inclusive else "false"});
% if with_totals:

    if (threadIdx.x == TILE_SIZE - 1)
        tile_totals[blockIdx.x] = ${"val" if inclusive else "combine(val, x)"};
% endif

    if (gidx < n)
        output[gidx] = val;
}

% endfor
extern "C" __global__ void ${name_prefix}_add_tile_totals(
    scan_type *output, const scan_type *tile_totals, index_type n)
{
    const index_type gidx = (index_type) blockIdx.x * TILE_SIZE + threadIdx.x;

    if (gidx < n)
        output[gidx] = combine(tile_totals[blockIdx.x], output[gidx]);
}
"""


def get_scan_source(dtype, op, mode, warp_size, tile_size,
        name_prefix="tilescan"):
    """Render the CUDA C source of the tile scan and tile-total kernels."""
    mode = ScanMode(mode)
    if op.c_expr is None:
        raise ConfigurationError(
                "operator '%s' has no C expression and cannot run on a "
                "CUDA device" % op.name)

    try:
        scan_ctype = dtype_to_ctype(dtype)
        neutral = op.c_neutral_for(dtype)
    except (ValueError, TypeError) as e:
        raise ConfigurationError(
                "dtype '%s' is not supported on a CUDA device: %s"
                % (np.dtype(dtype), e)) from e

    offsets = []
    offset = 1
    while offset < warp_size:
        offsets.append(offset)
        offset <<= 1

    tpl = Template(SCAN_SOURCE, strict_undefined=True)
    return str(tpl.render(
        warp_size=warp_size,
        log2_warp_size=bitlog2(warp_size),
        tile_size=tile_size,
        scan_expr=op.c_expr,
        neutral=neutral,
        scan_ctype=scan_ctype,
        offsets=offsets,
        inclusive=mode is ScanMode.INCLUSIVE,
        name_prefix=name_prefix))

# }}}


class _BuiltScanKernels(Record):
    def __init__(self, scan_tiles, scan_tiles_with_totals, add_tile_totals):
        Record.__init__(self,
                scan_tiles=scan_tiles,
                scan_tiles_with_totals=scan_tiles_with_totals,
                add_tile_totals=add_tile_totals)


def _round_down_to_power_of_2(val):
    result = 2**(val.bit_length() - 1)
    assert result <= val
    return result


class CudaDevice(Device):
    """Runs scans on a CUDA device through PyCUDA.

    Buffers are :class:`pycuda.gpuarray.GPUArray` instances. If *context* is
    *None*, :mod:`pycuda.autoinit` supplies one.
    """

    def __init__(self, context=None, options=None):
        import pycuda.driver as drv

        if context is None:
            import pycuda.autoinit
            context = pycuda.autoinit.context

        self.context = context
        self.options = options

        dev = context.get_device()
        self.name = dev.name()
        self.warp_size = dev.get_attribute(drv.device_attribute.WARP_SIZE)
        self.max_threads = dev.get_attribute(
                drv.device_attribute.MAX_THREADS_PER_BLOCK)

    @property
    def max_tile_size(self):
        return min(self.warp_size*self.warp_size,
                _round_down_to_power_of_2(self.max_threads))

    @property
    def default_tile_size(self):
        return self.max_tile_size

    # {{{ memory

    def mem_alloc(self, size, dtype):
        import pycuda.driver as drv
        import pycuda.gpuarray as gpuarray

        try:
            return gpuarray.empty(size, dtype)
        except drv.MemoryError as e:
            raise CapacityError(
                    "unable to allocate %d elements of %s on %s: %s"
                    % (size, np.dtype(dtype), self.name, e)) from e

    def memcpy_htod(self, dest, ary):
        dest.set(np.ascontiguousarray(ary))

    def memcpy_dtoh(self, src, ary=None):
        return src.get(ary)

    # }}}

    # {{{ kernels

    @memoize_method
    def get_scan_kernels(self, dtype, op, mode, tile_size):
        import pycuda.driver as drv
        from pycuda.compiler import SourceModule

        logger.debug("building scan kernels for '%s' on %s, tile size %d",
                op.name, np.dtype(dtype), tile_size)

        src = get_scan_source(dtype, op, mode, self.warp_size, tile_size)
        try:
            mod = SourceModule(src, options=self.options, no_extern_c=True)
        except drv.CompileError as e:
            raise ConfigurationError(
                    "scan kernels for operator '%s' failed to compile: %s"
                    % (op.name, e)) from e

        return _BuiltScanKernels(
                scan_tiles=mod.get_function("tilescan_scan_tiles"),
                scan_tiles_with_totals=mod.get_function(
                    "tilescan_scan_tiles_with_totals"),
                add_tile_totals=mod.get_function("tilescan_add_tile_totals"))

    def _launch(self, func, tile_count, tile_size, *args):
        import pycuda.driver as drv

        try:
            func(*args, block=(tile_size, 1, 1), grid=(tile_count, 1))
            drv.Context.synchronize()
        except drv.MemoryError as e:
            raise CapacityError("out of device memory: %s" % e) from e
        except drv.Error as e:
            raise ExecutionError(
                    "kernel launch on %s failed: %s" % (self.name, e)) from e

    def launch_scan_tiles(self, op, mode, neutral, input, output, tile_totals,
            n, tile_size):
        kernels = self.get_scan_kernels(input.dtype, op, mode, tile_size)

        if tile_totals is None:
            self._launch(kernels.scan_tiles, div_ceil(n, tile_size), tile_size,
                    input, output, np.int64(n))
        else:
            self._launch(kernels.scan_tiles_with_totals,
                    div_ceil(n, tile_size), tile_size,
                    input, output, tile_totals, np.int64(n))

    def launch_add_tile_totals(self, op, output, tile_totals, n, tile_size):
        # the add kernel does not depend on the mode
        kernels = self.get_scan_kernels(
                output.dtype, op, ScanMode.INCLUSIVE, tile_size)
        self._launch(kernels.add_tile_totals, div_ceil(n, tile_size), tile_size,
                output, tile_totals, np.int64(n))

    # }}}

# vim: foldmethod=marker
