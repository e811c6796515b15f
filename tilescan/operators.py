"""Scan modes and combining operators."""

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

import enum
import operator

import numpy as np
from pytools import ImmutableRecord


class ScanMode(enum.Enum):
    EXCLUSIVE = "exclusive"
    INCLUSIVE = "inclusive"


class ScanOperator(ImmutableRecord):
    """An associative combining function with an identity element.

    .. attribute:: name
    .. attribute:: combine

        A Python callable ``combine(a, b)``. *a* always precedes *b* in the
        sequence, so the operator need not be commutative.

    .. attribute:: neutral

        The identity element, or a callable taking a :class:`numpy.dtype`
        and returning it.

    .. attribute:: c_expr

        The same operation as a C expression in ``a`` and ``b``, for
        substrates that compile kernels. May be *None*.

    .. attribute:: c_neutral

        The identity as a C expression, or a callable taking a dtype. If
        *None*, it is derived from :attr:`neutral`.
    """

    def __init__(self, name, combine, neutral, c_expr=None, c_neutral=None):
        ImmutableRecord.__init__(self,
                name=name,
                combine=combine,
                neutral=neutral,
                c_expr=c_expr,
                c_neutral=c_neutral)

    def __call__(self, a, b):
        return self.combine(a, b)

    def neutral_for(self, dtype):
        dtype = np.dtype(dtype)

        neutral = self.neutral
        if callable(neutral):
            neutral = neutral(dtype)

        if dtype.kind in "biufc":
            return dtype.type(neutral)
        return neutral

    def c_neutral_for(self, dtype):
        c_neutral = self.c_neutral
        if callable(c_neutral):
            return c_neutral(dtype)
        if c_neutral is not None:
            return c_neutral

        return _to_c_literal(self.neutral_for(dtype))


def _to_c_literal(value):
    if isinstance(value, (bool, np.bool_)):
        return "true" if value else "false"
    if isinstance(value, (int, np.integer)):
        return "%d" % value
    if isinstance(value, (float, np.floating)):
        if np.isinf(value):
            return "-TILESCAN_INFINITY" if value < 0 else "TILESCAN_INFINITY"
        return repr(float(value))

    raise TypeError("no C literal for neutral element %r" % (value,))


# {{{ stock operators

def get_minmax_neutral(what, dtype):
    dtype = np.dtype(dtype)
    if issubclass(dtype.type, np.inexact):
        if what == "min":
            return np.inf
        elif what == "max":
            return -np.inf
        else:
            raise ValueError("what is not min or max.")
    elif dtype.kind in "iu":
        if what == "min":
            return np.iinfo(dtype).max
        elif what == "max":
            return np.iinfo(dtype).min
        else:
            raise ValueError("what is not min or max.")
    elif dtype.kind == "b":
        return what == "min"
    else:
        raise TypeError("no %s neutral for dtype '%s'" % (what, dtype))


plus = ScanOperator("plus", operator.add, 0, c_expr="a+b")

multiplies = ScanOperator("multiplies", operator.mul, 1, c_expr="a*b")

maximum = ScanOperator("maximum",
        lambda a, b: b if a < b else a,
        lambda dtype: get_minmax_neutral("max", dtype),
        c_expr="(a < b) ? b : a")

minimum = ScanOperator("minimum",
        lambda a, b: b if b < a else a,
        lambda dtype: get_minmax_neutral("min", dtype),
        c_expr="(b < a) ? b : a")

# }}}

# vim: foldmethod=marker
