"""Execution substrates: devices, tiled launches, errors."""

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

import threading

from tilescan.tools import div_ceil, is_power_of_two

import numpy as np

import logging
logger = logging.getLogger(__name__)


# {{{ errors

class ScanError(Exception):
    """Base class for all errors raised by the scan engine."""


class ConfigurationError(ScanError):
    """Tile/warp size or argument constraints were violated.

    Always raised before any work is dispatched to the device.
    """


class CapacityError(ScanError):
    """A buffer is too small, or device memory ran out."""


class ExecutionError(ScanError):
    """A launch on the device failed.

    The contents of any output buffer involved are undefined afterwards.
    """

# }}}


# {{{ tiled index

class TiledIndex:
    """What a lane sees of itself and its tile during a launch.

    .. attribute:: global_index
    .. attribute:: local
    .. attribute:: tile
    .. attribute:: tile_size
    .. attribute:: warp_size
    .. attribute:: barrier

        A :class:`threading.Barrier` shared by all lanes of the tile.

    .. attribute:: shared

        Tile-static storage, one element per lane, or *None*.
    """

    __slots__ = ["global_index", "local", "tile", "tile_size", "warp_size",
            "barrier", "shared", "_warp_barrier"]

    def __init__(self, tile, local, tile_size, warp_size, barrier,
            warp_barrier, shared):
        self.tile = tile
        self.local = local
        self.global_index = tile*tile_size + local
        self.tile_size = tile_size
        self.warp_size = warp_size
        self.barrier = barrier
        self.shared = shared
        self._warp_barrier = warp_barrier

    def warp_sync(self):
        """Wait for the other lanes of this lane's warp.

        Stands in for the lock-step execution of a hardware warp. Every lane
        of the warp must call it the same number of times.
        """
        self._warp_barrier.wait()

# }}}


# {{{ device base

class Device:
    """Interface of an execution substrate the scan driver can launch on."""

    name = None
    warp_size = None

    @property
    def max_tile_size(self):
        return self.warp_size*self.warp_size

    @property
    def default_tile_size(self):
        return self.warp_size

    def mem_alloc(self, size, dtype):
        raise NotImplementedError

    def memcpy_htod(self, dest, ary):
        raise NotImplementedError

    def memcpy_dtoh(self, src, ary=None):
        raise NotImplementedError

    def launch_scan_tiles(self, op, mode, neutral, input, output, tile_totals,
            n, tile_size):
        """Scan every tile of *input* into *output*.

        If *tile_totals* is not *None*, the inclusive total of tile ``k`` is
        written to ``tile_totals[k]``, whatever *mode* is.
        """
        raise NotImplementedError

    def launch_add_tile_totals(self, op, output, tile_totals, n, tile_size):
        """Combine ``tile_totals[k]`` into every element of tile ``k``."""
        raise NotImplementedError

    def __repr__(self):
        return "<{} '{}' warp_size={}>".format(
                type(self).__name__, self.name, self.warp_size)

# }}}


# {{{ host device

DEFAULT_HOST_WARP_SIZE = 32


class HostDevice(Device):
    """A CPU substrate that runs every lane on its own thread.

    Tiles are handed to a pool of *max_tile_workers* threads, each of which
    starts the lanes of its tile and waits for them. Lock-step within a warp
    is emulated by a barrier per warp, see :meth:`TiledIndex.warp_sync`.

    :arg barrier_timeout: seconds a lane may wait at a barrier before the
        launch is declared failed.
    """

    name = "host"

    def __init__(self, warp_size=DEFAULT_HOST_WARP_SIZE, max_tile_workers=None,
            barrier_timeout=60.):
        if not is_power_of_two(warp_size):
            raise ConfigurationError(
                    "warp size must be an exact power of 2, got %r" % warp_size)

        if max_tile_workers is None:
            import os
            max_tile_workers = min(os.cpu_count() or 1, 8)
        if max_tile_workers < 1:
            raise ConfigurationError("max_tile_workers must be positive")

        self.warp_size = warp_size
        self.max_tile_workers = max_tile_workers
        self.barrier_timeout = barrier_timeout
        self.launch_count = 0

    # {{{ memory

    def mem_alloc(self, size, dtype):
        try:
            return np.empty(size, dtype=dtype)
        except MemoryError as e:
            raise CapacityError(
                    "unable to allocate %d elements of %s: %s"
                    % (size, np.dtype(dtype), e)) from e

    def memcpy_htod(self, dest, ary):
        dest[...] = ary

    def memcpy_dtoh(self, src, ary=None):
        if ary is None:
            return src.copy()

        ary[...] = src
        return ary

    # }}}

    # {{{ launch

    def _run_tile(self, kernel, tile, tile_size, args, shared_dtype):
        warp_size = self.warp_size
        timeout = self.barrier_timeout

        barrier = threading.Barrier(tile_size, timeout=timeout)
        warp_barriers = [threading.Barrier(warp_size, timeout=timeout)
                for _ in range(tile_size // warp_size)]

        if shared_dtype is not None:
            shared = np.empty(tile_size, dtype=shared_dtype)
        else:
            shared = None

        errors = []

        def abort_tile():
            barrier.abort()
            for warp_barrier in warp_barriers:
                warp_barrier.abort()

        def run_lane(local):
            tidx = TiledIndex(tile, local, tile_size, warp_size, barrier,
                    warp_barriers[local // warp_size], shared)
            try:
                kernel(tidx, *args)
            except Exception as e:
                errors.append(e)
                abort_tile()

        lanes = [
                threading.Thread(target=run_lane, args=(local,),
                    name="tilescan-tile%d-lane%d" % (tile, local), daemon=True)
                for local in range(tile_size)]
        started = []
        try:
            for lane in lanes:
                lane.start()
                started.append(lane)
        except BaseException:
            abort_tile()
            raise
        finally:
            for lane in started:
                lane.join()

        if errors:
            # lanes that only saw the aborted barrier are not the cause
            for e in errors:
                if not isinstance(e, threading.BrokenBarrierError):
                    raise e
            raise errors[0]

    def launch(self, kernel, tile_count, tile_size, *args, shared_dtype=None):
        """Run *kernel* on every lane of *tile_count* tiles of *tile_size*.

        *kernel* is called as ``kernel(tidx, *args)`` with a
        :class:`TiledIndex`. If *shared_dtype* is given, each tile gets a
        fresh tile-static array of that dtype in ``tidx.shared``.
        """
        if tile_size % self.warp_size:
            raise ConfigurationError(
                    "tile size %d is not a multiple of the warp size %d"
                    % (tile_size, self.warp_size))

        self.launch_count += 1
        if not tile_count:
            return

        kernel_name = getattr(kernel, "__name__", repr(kernel))
        logger.debug("launching '%s' on %d tiles of %d lanes",
                kernel_name, tile_count, tile_size)

        from concurrent.futures import ThreadPoolExecutor
        try:
            with ThreadPoolExecutor(
                    max_workers=min(self.max_tile_workers, tile_count),
                    thread_name_prefix="tilescan-tile") as pool:
                futures = [
                        pool.submit(self._run_tile, kernel, tile, tile_size,
                            args, shared_dtype)
                        for tile in range(tile_count)]
                for future in futures:
                    future.result()
        except threading.BrokenBarrierError as e:
            raise ExecutionError(
                    "kernel '%s': tile barrier broken (timeout after %ss?)"
                    % (kernel_name, self.barrier_timeout)) from e
        except Exception as e:
            raise ExecutionError(
                    "kernel '{}' failed: {}: {}".format(
                        kernel_name, type(e).__name__, e)) from e

    def launch_scan_tiles(self, op, mode, neutral, input, output, tile_totals,
            n, tile_size):
        from tilescan.tile import scan_tiles_kernel
        self.launch(scan_tiles_kernel, div_ceil(n, tile_size), tile_size,
                op, mode, neutral, input, output, tile_totals, n,
                shared_dtype=input.dtype)

    def launch_add_tile_totals(self, op, output, tile_totals, n, tile_size):
        from tilescan.tile import add_tile_totals_kernel
        self.launch(add_tile_totals_kernel, div_ceil(n, tile_size), tile_size,
                op, output, tile_totals, n)

    # }}}

# }}}

# vim: foldmethod=marker
