# Prefix sums on the default device, and a stream compaction built on them.
import numpy

from tilescan.array import to_device
from tilescan.operators import ScanOperator, plus, maximum
from tilescan.scan import scan, exclusive_scan, inclusive_scan

a = numpy.random.randint(0, 10, 20).astype(numpy.int32)

print("original array:")
print(a)
print("exclusive prefix sum:")
print(exclusive_scan(a))
print("running maximum:")
print(inclusive_scan(a, op=maximum))

# in place on a device array --------------------------------------------------

a_dev = to_device(a)
scan("inclusive", plus, a_dev)
print("inclusive prefix sum, computed in place:")
print(a_dev.get())

# stream compaction -----------------------------------------------------------

# The exclusive scan of the keep-flags gives each kept element its slot in
# the compacted output.
keep = (a % 2 == 0).astype(numpy.int32)
slots = exclusive_scan(keep)

compacted = numpy.empty(slots[-1] + keep[-1], dtype=a.dtype)
compacted[slots[keep == 1]] = a[keep == 1]
print("even elements:")
print(compacted)

# any associative operator works on the host device ---------------------------

concat = ScanOperator("concat", lambda x, y: x + y, "")
print(inclusive_scan(list("tilescan"), op=concat, dtype=object))
