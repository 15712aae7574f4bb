"""Instrument clients: the capability interface plus live and simulated devices."""

from poreselect.instrument.base import InstrumentClient
from poreselect.instrument.live import LiveInstrument, load_callable
from poreselect.instrument.simulator import SimulatedInstrument, SimulatedRead, load_signal_table

__all__ = [
    "InstrumentClient",
    "LiveInstrument",
    "SimulatedInstrument",
    "SimulatedRead",
    "load_callable",
    "load_signal_table",
]
