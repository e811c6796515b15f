"""Warp- and tile-level scans, and the kernels built from them.

These run once per lane, on every lane of a tile at the same time, in the
manner of a GPU kernel. Lanes of one warp are assumed to execute in
lock-step; :meth:`tilescan.driver.TiledIndex.warp_sync` marks the points
where that assumption is relied upon.

Scan implementation using the algorithm described in

    S. Sengupta, M. Harris, M. Garland, "Efficient Parallel Scan Algorithms
    for GPUs", NVIDIA Technical Report NVR-2008-003.
"""

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

from tilescan.operators import ScanMode
from tilescan.tools import bitlog2


def scan_warp(tile_data, idx, tidx, op, mode=ScanMode.INCLUSIVE, neutral=None):
    """Scan the warp-sized run of *tile_data* that contains *idx*.

    Leaves the inclusive scan in *tile_data* and returns this lane's result
    in *mode*. *neutral* is only needed for exclusive mode.
    """
    warp_size = tidx.warp_size
    widx = idx & (warp_size - 1)

    offset = 1
    while offset < warp_size:
        if widx >= offset:
            partner = tile_data[idx - offset]
        tidx.warp_sync()
        if widx >= offset:
            tile_data[idx] = op(partner, tile_data[idx])
        tidx.warp_sync()

        offset <<= 1

    if mode is ScanMode.INCLUSIVE:
        return tile_data[idx]
    return tile_data[idx - 1] if widx > 0 else neutral


def scan_tile(tile_data, tidx, op, mode, neutral):
    """Scan the whole of *tile_data*, one element per lane.

    On return every lane has written its result to its own slot of
    *tile_data*, and that result is returned.
    """
    warp_size = tidx.warp_size
    lidx = tidx.local
    warp_id = lidx >> bitlog2(warp_size)

    # Step 1: Intra-warp scan in each warp
    val = scan_warp(tile_data, lidx, tidx, op, mode, neutral)
    warp_prefix = tile_data[lidx]
    tidx.barrier.wait()

    # Step 2: Collect per-warp totals
    if (lidx & (warp_size - 1)) == warp_size - 1:
        tile_data[warp_id] = warp_prefix
    tidx.barrier.wait()

    # Step 3: Use the first warp to scan the per-warp totals
    if warp_id == 0:
        scan_warp(tile_data, lidx, tidx, op)
    tidx.barrier.wait()

    # Step 4: Add in the totals of all preceding warps
    if warp_id > 0:
        val = op(tile_data[warp_id - 1], val)
    tidx.barrier.wait()

    # Step 5: Publish
    tile_data[lidx] = val
    tidx.barrier.wait()

    return val


# {{{ kernels

def scan_tiles_kernel(tidx, op, mode, neutral, input, output, tile_totals, n):
    gidx = tidx.global_index
    lidx = tidx.local

    x = input[gidx] if gidx < n else neutral
    tile_data = tidx.shared
    tile_data[lidx] = x
    tidx.barrier.wait()

    val = scan_tile(tile_data, tidx, op, mode, neutral)

    if tile_totals is not None and lidx == tidx.tile_size - 1:
        # x is the neutral element if this lane is past the end
        if mode is ScanMode.INCLUSIVE:
            tile_totals[tidx.tile] = val
        else:
            tile_totals[tidx.tile] = op(val, x)

    if gidx < n:
        output[gidx] = val


def add_tile_totals_kernel(tidx, op, output, tile_totals, n):
    gidx = tidx.global_index
    if gidx < n:
        output[gidx] = op(tile_totals[tidx.tile], output[gidx])

# }}}

# vim: foldmethod=marker
