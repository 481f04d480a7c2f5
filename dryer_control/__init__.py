"""
dryer_control

Controls a shared clothes dryer through a serial power meter and a relay,
bills the active user for the energy consumed and switches the dryer off when
the balance runs out or the drum sits idle.
"""

__version__ = "0.1.0"
