"""Connection statistics (``natsStatistics``)."""

from __future__ import annotations

from ctypes import byref, c_uint64, c_void_p
from dataclasses import dataclass

from natsbind import _native, runtime
from natsbind.errors import raise_for_status, value_or_raise


@dataclass(frozen=True, slots=True)
class StatsCounts:
    """A snapshot of a connection's monotonic counters."""

    messages_in: int = 0
    bytes_in: int = 0
    messages_out: int = 0
    bytes_out: int = 0
    reconnects: int = 0


class Statistics(runtime.NativeResource):
    """Native statistics object, filled by :meth:`Connection.get_stats`."""

    kind = "statistics"

    @classmethod
    def create(cls) -> Statistics:
        runtime.require_initialized()
        handle = c_void_p()
        raise_for_status(_native.get_library().natsStatistics_Create(byref(handle)))
        return cls(handle.value)

    def get_counts(self) -> StatsCounts:
        counters = [c_uint64(0) for _ in range(5)]
        status = _native.get_library().natsStatistics_GetCounts(
            self.handle, *(byref(c) for c in counters)
        )
        return value_or_raise(status, StatsCounts(*(c.value for c in counters)))

    def destroy(self) -> None:
        _native.get_library().natsStatistics_Destroy(self._release())
