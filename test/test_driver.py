#! /usr/bin/env python

import sys
import threading

import numpy as np
import pytest

import tilescan.tools as tools
from tilescan.array import DeviceArray, to_device, empty_like, zeros
from tilescan.driver import (HostDevice, ScanError, ConfigurationError,
        ExecutionError)
from tilescan.operators import (ScanMode, plus, multiplies, maximum, minimum,
        get_minmax_neutral)


class TestHostDevice:
    @pytest.mark.parametrize("warp_size", [0, 3, 6, -4, 4.0])
    def test_bad_warp_size(self, warp_size):
        with pytest.raises(ConfigurationError):
            HostDevice(warp_size=warp_size)

    def test_bad_worker_count(self):
        with pytest.raises(ConfigurationError):
            HostDevice(max_tile_workers=0)

    def test_launch_covers_every_lane(self):
        device = HostDevice(warp_size=4, max_tile_workers=2)
        seen = np.full((5, 8), -1, dtype=np.int64)

        def kernel(tidx):
            seen[tidx.tile, tidx.local] = tidx.global_index

        device.launch(kernel, 5, 8)

        assert (seen.ravel() == np.arange(40)).all()
        assert device.launch_count == 1

    def test_shared_storage_is_per_tile(self):
        device = HostDevice(warp_size=4)
        out = np.empty(6*8, dtype=np.int32)

        def kernel(tidx):
            tidx.shared[tidx.local] = tidx.tile
            tidx.barrier.wait()
            # every slot was written by a lane of this tile
            out[tidx.global_index] = tidx.shared.sum()

        device.launch(kernel, 6, 8, shared_dtype=np.int32)

        assert out.tolist() == [8*tile for tile in range(6) for _ in range(8)]

    def test_barrier_orders_lanes(self):
        device = HostDevice(warp_size=4)
        out = np.empty(16, dtype=np.int32)

        def kernel(tidx):
            tidx.shared[tidx.local] = tidx.local
            tidx.barrier.wait()
            out[tidx.local] = tidx.shared[15 - tidx.local]

        device.launch(kernel, 1, 16, shared_dtype=np.int32)

        assert out.tolist() == list(range(15, -1, -1))

    def test_tile_size_not_a_warp_multiple(self):
        device = HostDevice(warp_size=4)

        with pytest.raises(ConfigurationError):
            device.launch(lambda tidx: None, 1, 6)
        assert device.launch_count == 0

    def test_zero_tiles(self):
        device = HostDevice(warp_size=4)
        device.launch(lambda tidx: 1/0, 0, 4)
        assert device.launch_count == 1

    def test_lane_error_propagates(self):
        device = HostDevice(warp_size=4)

        def kernel(tidx):
            if tidx.global_index == 13:
                raise KeyError("lane 13")
            tidx.barrier.wait()

        with pytest.raises(ExecutionError) as excinfo:
            device.launch(kernel, 2, 8)

        assert isinstance(excinfo.value.__cause__, KeyError)
        assert isinstance(excinfo.value, ScanError)

    def test_divergent_barrier_times_out(self):
        device = HostDevice(warp_size=4, barrier_timeout=0.5)

        def kernel(tidx):
            if tidx.local != 0:
                tidx.barrier.wait()

        with pytest.raises(ExecutionError) as excinfo:
            device.launch(kernel, 1, 4)

        assert isinstance(excinfo.value.__cause__, threading.BrokenBarrierError)

    def test_lane_start_failure_releases_tile(self, monkeypatch):
        device = HostDevice(warp_size=4, barrier_timeout=30.)
        real_start = threading.Thread.start

        def start(thread):
            if thread.name.endswith("-lane2"):
                raise RuntimeError("can't start new thread")
            real_start(thread)

        monkeypatch.setattr(threading.Thread, "start", start)

        def kernel(tidx):
            tidx.barrier.wait()

        with pytest.raises(ExecutionError) as excinfo:
            device.launch(kernel, 1, 4)

        assert isinstance(excinfo.value.__cause__, RuntimeError)
        assert not [thread for thread in threading.enumerate()
                if "-lane" in thread.name and thread.is_alive()]

    def test_memory(self):
        device = HostDevice()
        data = device.mem_alloc(10, np.float32)
        assert data.dtype == np.float32
        assert data.shape == (10,)

        device.memcpy_htod(data, np.arange(10, dtype=np.float32))
        assert device.memcpy_dtoh(data).tolist() == list(range(10))


class TestDeviceArray:
    def test_round_trip(self):
        device = HostDevice()
        host = np.arange(17, dtype=np.int16)

        ary = to_device(host, device)
        assert len(ary) == 17
        assert ary.shape == (17,)
        assert ary.nbytes == 34
        assert ary.device is device
        assert (ary.get() == host).all()

        target = np.empty(17, np.int16)
        assert ary.get(target) is target
        assert (target == host).all()

    def test_copy_is_independent(self):
        device = HostDevice()
        ary = to_device(np.arange(8, dtype=np.int32), device)

        dup = ary.copy()
        ary.set(np.zeros(8, np.int32))

        assert dup.get().tolist() == list(range(8))

    def test_zeros_and_empty_like(self):
        device = HostDevice()
        ary = zeros(5, np.int64, device)
        assert ary.get().tolist() == [0]*5

        other = empty_like(ary, np.float32)
        assert other.size == 5
        assert other.dtype == np.float32
        assert other.device is device

    def test_mismatches(self):
        device = HostDevice()
        ary = DeviceArray(4, np.int32, device)

        with pytest.raises(ValueError):
            ary.set(np.zeros(5, np.int32))
        with pytest.raises(ValueError):
            ary.set(np.zeros(4, np.float64))
        with pytest.raises(ValueError):
            ary.get(np.empty(3, np.int32))
        with pytest.raises(TypeError):
            ary.get(np.empty(4, np.int64))

    def test_bad_shapes(self):
        device = HostDevice()

        with pytest.raises(ValueError):
            to_device(np.zeros((2, 2)), device)
        with pytest.raises(ValueError):
            DeviceArray((2, 3), np.int32, device)
        with pytest.raises(ValueError):
            DeviceArray(-1, np.int32, device)

    def test_empty(self):
        ary = DeviceArray(0, np.float64, HostDevice())
        assert ary.get().shape == (0,)
        assert ary.copy().size == 0


class TestOperators:
    def test_neutral_elements(self):
        assert plus.neutral_for(np.int32) == 0
        assert plus.neutral_for(np.int32).dtype == np.int32
        assert multiplies.neutral_for(np.float64) == 1

        assert maximum.neutral_for(np.int8) == -128
        assert minimum.neutral_for(np.uint16) == 65535
        assert maximum.neutral_for(np.float32) == -np.inf

    def test_operators_apply(self):
        assert plus(3, 4) == 7
        assert multiplies(3, 4) == 12
        assert maximum(3, 4) == 4
        assert minimum(3, 4) == 3

    def test_c_neutrals(self):
        assert plus.c_neutral_for(np.int32) == "0"
        assert multiplies.c_neutral_for(np.float64) == "1.0"
        assert maximum.c_neutral_for(np.float32) == "-TILESCAN_INFINITY"
        assert minimum.c_neutral_for(np.int32) == "2147483647"
        assert minimum.c_neutral_for(np.bool_) == "true"

    def test_minmax_neutral_errors(self):
        with pytest.raises(ValueError):
            get_minmax_neutral("mean", np.int32)
        with pytest.raises(TypeError):
            get_minmax_neutral("min", object)

    def test_operators_are_hashable(self):
        assert len({plus, multiplies, maximum, minimum, plus}) == 4


class TestTools:
    def test_integer_helpers(self):
        assert [tools.is_power_of_two(i) for i in range(9)] == [
                False, True, True, False, True, False, False, False, True]
        assert tools.bitlog2(1) == 0
        assert tools.bitlog2(1024) == 10
        assert tools.div_ceil(17, 4) == 5
        assert tools.div_ceil(16, 4) == 4

        with pytest.raises(ValueError):
            tools.bitlog2(12)

    def test_dtype_to_ctype(self):
        assert tools.dtype_to_ctype(np.int32) == "int"
        assert tools.dtype_to_ctype(np.float64) == "double"
        assert tools.dtype_to_ctype(np.uint64) == "unsigned long long"

        with pytest.raises(ValueError):
            tools.dtype_to_ctype(object)
        with pytest.raises(ValueError):
            tools.dtype_to_ctype(None)

    def test_sequential_scan(self):
        x = np.array([3, 1, 4, 1, 5], dtype=np.int32)

        assert tools.sequential_scan("inclusive", plus, x) == [3, 4, 8, 9, 14]
        assert tools.sequential_scan(ScanMode.EXCLUSIVE, plus, x) == [
                0, 3, 4, 8, 9]
        assert tools.sequential_scan("exclusive", maximum, x) == [
                np.iinfo(np.int32).min, 3, 3, 4, 4]
        assert tools.sequential_scan("inclusive", plus, []) == []


class TestDefaultDevice:
    @pytest.fixture(autouse=True)
    def reset_default_device(self, monkeypatch):
        for name in ["TILESCAN_DEVICE", "TILESCAN_WARP_SIZE",
                "TILESCAN_TILE_WORKERS", "TILESCAN_BARRIER_TIMEOUT"]:
            monkeypatch.delenv(name, raising=False)

        tools.set_default_device(None)
        yield
        tools.set_default_device(None)

    def test_defaults(self):
        device = tools.get_default_device()

        assert isinstance(device, HostDevice)
        assert device.warp_size == 32
        assert tools.get_default_device() is device

    def test_environment(self, monkeypatch):
        monkeypatch.setenv("TILESCAN_DEVICE", "Host")
        monkeypatch.setenv("TILESCAN_WARP_SIZE", "8")
        monkeypatch.setenv("TILESCAN_TILE_WORKERS", "3")
        monkeypatch.setenv("TILESCAN_BARRIER_TIMEOUT", "2.5")

        device = tools.get_default_device()

        assert device.warp_size == 8
        assert device.max_tile_workers == 3
        assert device.barrier_timeout == 2.5

    @pytest.mark.parametrize(("name", "value"), [
        ("TILESCAN_DEVICE", "tpu"),
        ("TILESCAN_WARP_SIZE", "eight"),
        ("TILESCAN_WARP_SIZE", "12"),
        ("TILESCAN_TILE_WORKERS", "0"),
        ("TILESCAN_BARRIER_TIMEOUT", "soon"),
        ])
    def test_bad_environment(self, monkeypatch, name, value):
        monkeypatch.setenv(name, value)

        with pytest.raises(ConfigurationError):
            tools.make_default_device()

    def test_set_default_device(self):
        device = HostDevice(warp_size=4)
        tools.set_default_device(device)

        assert tools.get_default_device() is device
        assert DeviceArray(3, np.int32).device is device


if __name__ == "__main__":
    if len(sys.argv) > 1:
        exec(sys.argv[1])
    else:
        from pytest import main

        main([__file__])
